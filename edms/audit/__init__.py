"""EDMS Audit — append-only action trail."""
