"""Caller identity as supplied by the identity provider."""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Marketplace roles."""

    CLIENT = "client"            # Requests and pays for work
    SPECIALIST = "specialist"    # Evaluates and performs work
    ADMIN = "admin"              # Platform administrator


@dataclass(frozen=True)
class Actor:
    """The ``(user_id, role)`` pair attached to every call.

    The engine trusts this value; authentication happens upstream.
    """

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_client(self) -> bool:
        return self.role == Role.CLIENT

    @property
    def is_specialist(self) -> bool:
        return self.role == Role.SPECIALIST
