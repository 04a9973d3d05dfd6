from dataclasses import dataclass, field
from typing import FrozenSet

STUDENT = "STUDENT"
COACH = "COACH"
ADMIN = "ADMIN"

ROLE_NAMES = (STUDENT, COACH, ADMIN)


@dataclass(frozen=True)
class Actor:
    """The principal invoking an engine operation, as resolved by the identity layer."""
    user_id: int
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles

    @property
    def is_coach(self) -> bool:
        return COACH in self.roles

    @property
    def is_student(self) -> bool:
        return STUDENT in self.roles
