"""
EDMS Role Model — Closed, totally ordered role hierarchy.

    Viewer (0) < Contributor (1) < Manager (2) < Admin (3)

A higher role holds every privilege of the roles below it. Role strings are
parsed once at the identity boundary; everything past that point works with
the typed ``Role`` enum.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Union

from edms.engine.errors import InvalidRoleError


class Role(IntEnum):
    VIEWER = 0
    CONTRIBUTOR = 1
    MANAGER = 2
    ADMIN = 3

    @property
    def label(self) -> str:
        """Canonical display name ("Viewer", "Contributor", ...)."""
        return self.name.capitalize()

    def __str__(self) -> str:
        return self.label


ALL_ROLES = tuple(r.label for r in Role)

RoleLike = Union[Role, str]


def parse_role(value: RoleLike) -> Role:
    """
    Parse a role name case-insensitively.

    Raises:
        InvalidRoleError: if ``value`` is not one of the four role names.
    """
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        key = value.strip().upper()
        if key in Role.__members__:
            return Role[key]
    raise InvalidRoleError(
        f"Invalid role '{value}'. Expected one of: {', '.join(ALL_ROLES)}",
        value=value,
    )


def is_valid_role(value: RoleLike) -> bool:
    try:
        parse_role(value)
    except InvalidRoleError:
        return False
    return True


def has_permission(user_role: RoleLike, required_role: RoleLike) -> bool:
    """True if ``user_role`` is at least ``required_role``. Unparseable input → False."""
    try:
        return parse_role(user_role) >= parse_role(required_role)
    except InvalidRoleError:
        return False
