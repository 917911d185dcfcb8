"""Participant models — users, their profiles, and staked dispute admins.

Users are never registered explicitly. Any event that references an
address creates the User on first sight, so task and dispute records can
always point at a real identity. The zero address stands in for "no
worker assigned yet".
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


ZERO_ADDRESS = "0x" + "0" * 40


@dataclass
class UserProfile:
    """Self-published profile fields from the user-info contract."""
    name: str = ""
    email: str = ""
    bio: str = ""
    website: str = ""
    created_at: int = 0
    updated_at: int = 0


@dataclass
class User:
    """A wallet address seen anywhere in the event stream."""
    address: str
    profile: Optional[UserProfile] = None
    skills: list[str] = field(default_factory=list)
    skills_updated_at: Optional[int] = None
    created_at: int = 0
    updated_at: int = 0

    @property
    def is_zero(self) -> bool:
        return self.address == ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> User:
        profile = data.get("profile")
        return User(
            address=data["address"],
            profile=UserProfile(**profile) if profile is not None else None,
            skills=list(data.get("skills", [])),
            skills_updated_at=data.get("skills_updated_at"),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
        )


@dataclass
class Admin:
    """A staked participant eligible to vote on disputes.

    Withdrawal zeroes the stake and deactivates the admin; the record
    itself is kept so past participation stays queryable.
    """
    address: str
    stake_amount: int = 0
    is_active: bool = False
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Admin:
        return Admin(**data)
