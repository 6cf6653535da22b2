"""Closed set of user roles and the capabilities each one is granted."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"


class Capability(str, Enum):
    MANAGE_BOOKINGS = "manage_bookings"
    CALL_QUEUE = "call_queue"
    VIEW_CROWD = "view_crowd"
    ADMINISTER = "administer"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.STUDENT: frozenset({Capability.MANAGE_BOOKINGS, Capability.VIEW_CROWD}),
    Role.STAFF: frozenset({Capability.CALL_QUEUE, Capability.VIEW_CROWD}),
    Role.ADMIN: frozenset(
        {Capability.ADMINISTER, Capability.CALL_QUEUE, Capability.VIEW_CROWD}
    ),
}


def capabilities_for(role: Role) -> frozenset[Capability]:
    try:
        return ROLE_CAPABILITIES[role]
    except KeyError as exc:
        raise AssertionError(f"role {role!r} has no capability mapping") from exc


def role_allows(role: Role, capability: Capability) -> bool:
    return capability in capabilities_for(role)
