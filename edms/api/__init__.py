"""EDMS HTTP API."""
