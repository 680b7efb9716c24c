"""
EDMS Security — role hierarchy and access decisions.
"""

from edms.security.roles import ALL_ROLES, Role, has_permission, is_valid_role, parse_role

__all__ = [
    "ALL_ROLES",
    "Role",
    "has_permission",
    "is_valid_role",
    "parse_role",
]
