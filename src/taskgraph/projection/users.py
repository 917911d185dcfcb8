"""User projection — profile and skill updates from the user-info contract."""

from __future__ import annotations

from typing import Callable

from taskgraph.errors import MalformedEventError
from taskgraph.identity import IdentityResolver, normalize_address
from taskgraph.models.events import ChainEvent, EventName
from taskgraph.models.user import UserProfile
from taskgraph.persistence.entity_store import EntityKind, EntityStore

Handler = Callable[[ChainEvent], None]


class UserProjection:
    """Handlers for the user-info contract.

    Both events overwrite: the latest profile or skill list published by
    the user replaces the previous one.
    """

    def __init__(self, store: EntityStore, identities: IdentityResolver) -> None:
        self._store = store
        self._identities = identities

    def handlers(self) -> dict[EventName, Handler]:
        return {
            EventName.USER_PROFILE_UPDATED: self.handle_profile_updated,
            EventName.USER_SKILLS_UPDATED: self.handle_skills_updated,
        }

    def entity_key(self, event: ChainEvent) -> str:
        return f"user:{normalize_address(event.param('user'))}"

    def handle_profile_updated(self, event: ChainEvent) -> None:
        ts = event.block_timestamp
        user = self._identities.get_or_create_user(event.param("user"), ts)
        created_at = user.profile.created_at if user.profile is not None else ts
        user.profile = UserProfile(
            name=event.params.get("name", ""),
            email=event.params.get("email", ""),
            bio=event.params.get("bio", ""),
            website=event.params.get("website", ""),
            created_at=created_at,
            updated_at=ts,
        )
        user.updated_at = ts
        self._store.put(EntityKind.USER, user.address, user)

    def handle_skills_updated(self, event: ChainEvent) -> None:
        skills = event.param("skills")
        if not isinstance(skills, (list, tuple)):
            raise MalformedEventError(
                f"{event.event_name} at {event.event_id} has non-list skills: {skills!r}",
                entity_kind="event",
                entity_id=event.event_id,
            )
        ts = event.block_timestamp
        user = self._identities.get_or_create_user(event.param("user"), ts)
        user.skills = [str(skill) for skill in skills]
        user.skills_updated_at = ts
        user.updated_at = ts
        self._store.put(EntityKind.USER, user.address, user)
