"""EDMS Documents — lifecycle manager, share registry, tag catalog and blob store."""
