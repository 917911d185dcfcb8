"""Identity resolution — deterministic IDs and get-or-create for participants.

Addresses arrive checksummed from the chain client and lowercase from
archived events. Both collapse to the same lowercase key here, so a user
is one record no matter which contract first mentioned them.

Address validity is checked by the decoding layer before an event reaches
a handler; the resolver only normalises.
"""

from __future__ import annotations

from taskgraph.models.user import ZERO_ADDRESS, Admin, User
from taskgraph.persistence.entity_store import EntityKind, EntityStore

__all__ = ["IdentityResolver", "ZERO_ADDRESS", "normalize_address"]


def normalize_address(address: str) -> str:
    """Canonical store key for an address: lowercase hex."""
    return str(address).strip().lower()


class IdentityResolver:
    """Get-or-create access to User and Admin records.

    Creation goes through EntityStore.setdefault, so two streams
    referencing a new address at the same moment end up sharing one
    record and neither overwrites fields the other has already set.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    def get_or_create_user(self, address: str, timestamp: int = 0) -> User:
        user_id = normalize_address(address)
        return self._store.setdefault(
            EntityKind.USER,
            user_id,
            User(address=user_id, created_at=timestamp, updated_at=timestamp),
        )

    def zero_user(self, timestamp: int = 0) -> User:
        """The "no worker yet" sentinel user."""
        return self.get_or_create_user(ZERO_ADDRESS, timestamp)

    def get_or_create_admin(self, address: str, timestamp: int = 0) -> Admin:
        admin_id = normalize_address(address)
        return self._store.setdefault(
            EntityKind.ADMIN,
            admin_id,
            Admin(address=admin_id, created_at=timestamp, updated_at=timestamp),
        )
