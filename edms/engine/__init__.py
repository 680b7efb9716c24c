"""EDMS Engine — configuration, errors, identity, logging and request context."""
