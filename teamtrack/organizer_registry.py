import logging
from typing import List, Optional

from shared.events import EventType, organizer_event
from shared.state_machine import OrganizerStateMachine, RelationState, TransitionError

from .errors import NotFoundError, SafetyViolationError, ValidationError
from .models import (
    LEGACY_FIELDS, ORGANIZER_RELATIONS, TOURNAMENTS, OrganizerRelation, OrganizerWithProfile,
    Tournament, encode_datetime, utcnow
)
from .safety import SafetyAction
from .store import DocumentStore, query_any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ORGANIZERS = 5


class OrganizerRegistry:
    """
    Owns the user <-> tournament organizer relations.
    - active=False is a pending invite, active=True an accepted organizer
    - Accepting increments the tournament's organizer_count
    - Removal decrements it, never below 1
    """

    def __init__(
        self,
        store: DocumentStore,
        profiles,
        publisher=None,
        safety=None,
        default_max_organizers: int = DEFAULT_MAX_ORGANIZERS
    ):
        self.store = store
        self.profiles = profiles
        self.publisher = publisher
        self.safety = safety
        self.default_max_organizers = default_max_organizers

    # ==================== Reads ====================

    async def find_relation(self, relation_id: str) -> Optional[OrganizerRelation]:
        doc = await self.store.get(ORGANIZER_RELATIONS, relation_id)
        return OrganizerRelation.from_document(doc) if doc else None

    async def get_relation(self, relation_id: str) -> OrganizerRelation:
        relation = await self.find_relation(relation_id)
        if relation is None:
            raise NotFoundError('organizer_relation', relation_id)
        return relation

    async def find_pair(self, user_id: str, tournament_id: str) -> Optional[OrganizerRelation]:
        matches = await self._select('user_id', user_id, tournament_id=tournament_id)
        return matches[0] if matches else None

    async def list_organizers(self, tournament_id: str, include_pending: bool = False) -> List[OrganizerWithProfile]:
        if include_pending:
            relations = await self._select('tournament_id', tournament_id)
        else:
            relations = await self._select('tournament_id', tournament_id, active=True)
        profiles = await self.profiles.get_profiles(r.user_id for r in relations)
        return [OrganizerWithProfile(r, profiles.get(r.user_id)) for r in relations]

    async def list_active_relations(self, tournament_id: str) -> List[OrganizerRelation]:
        return await self._select('tournament_id', tournament_id, active=True)

    async def list_tournament_relations(self, tournament_id: str) -> List[OrganizerRelation]:
        """Every relation for a tournament, pending invites included."""
        return await self._select('tournament_id', tournament_id)

    async def list_relations_for_user(self, user_id: str) -> List[OrganizerRelation]:
        return await self._select('user_id', user_id)

    async def list_tournaments_organized_by(self, user_id: str) -> List[str]:
        """Ids of the tournaments the user is an accepted organizer of."""
        return [r.tournament_id for r in await self._select('user_id', user_id, active=True)]

    async def list_pending_invites(self, user_id: str) -> List[OrganizerRelation]:
        return await self._select('user_id', user_id, active=False)

    async def _select(self, key: str, value: str, **attrs) -> List[OrganizerRelation]:
        # Matches version-1 records too; see MembershipRegistry._select
        docs = await query_any(self.store, ORGANIZER_RELATIONS, (key, LEGACY_FIELDS[key]), value)
        relations = [OrganizerRelation.from_document(d) for d in docs]
        matched = [r for r in relations if all(getattr(r, k) == v for k, v in attrs.items())]
        return sorted(matched, key=lambda r: r.created_at)

    # ==================== Creation ====================

    async def add_organizer(self, user_id: str, tournament_id: str) -> OrganizerRelation:
        """Creator path: the relation starts out active and is already counted."""
        if not user_id or not tournament_id:
            raise ValidationError("user_id and tournament_id are required")

        relation = OrganizerRelation(user_id=user_id, tournament_id=tournament_id, active=True)
        await self.store.set(ORGANIZER_RELATIONS, relation.id, relation.to_document())
        return relation

    async def invite_organizer(self, tournament_id: str, email: str) -> OrganizerRelation:
        if not email or not email.strip():
            raise ValidationError("Email is required")

        tournament = await self._require_tournament(tournament_id)
        if tournament.organizer_count >= tournament.max_organizers:
            raise ValidationError(
                f"Tournament {tournament.name} already has the maximum of "
                f"{tournament.max_organizers} organizers"
            )

        profile = await self.profiles.find_by_email(email)
        if profile is None:
            raise NotFoundError('user', email, f"No user registered with email {email}")

        existing = await self.find_pair(profile.id, tournament_id)
        if existing:
            if existing.active:
                raise ValidationError("User is already an organizer of this tournament")
            raise ValidationError("User already has a pending organizer invite for this tournament")

        relation = OrganizerRelation(user_id=profile.id, tournament_id=tournament_id)
        await self.store.set(ORGANIZER_RELATIONS, relation.id, relation.to_document())

        await self._publish(EventType.ORGANIZER_INVITED, relation, notify_user=True)
        return relation

    # ==================== Lifecycle ====================

    async def accept_invite(self, relation_id: str) -> OrganizerRelation:
        relation = await self.get_relation(relation_id)
        tournament = await self._require_tournament(relation.tournament_id)

        # Capacity may have been reached since the invite went out
        self._transition(relation, 'accept', {
            'organizer_count': tournament.organizer_count,
            'max_organizers': tournament.max_organizers,
        })

        doc = await self.store.update(ORGANIZER_RELATIONS, relation.id, {
            'active': True,
            'updated_at': encode_datetime(utcnow()),
        })
        relation = OrganizerRelation.from_document(doc)
        await self.adjust_organizer_count(relation.tournament_id, 1)

        await self._publish(EventType.ORGANIZER_ACCEPTED, relation)
        return relation

    async def decline_invite(self, relation_id: str) -> None:
        relation = await self.get_relation(relation_id)
        self._transition(relation, 'decline')

        if not await self.store.delete(ORGANIZER_RELATIONS, relation.id):
            raise NotFoundError('organizer_relation', relation_id)
        await self._publish(EventType.ORGANIZER_DECLINED, relation)

    async def remove_organizer(self, user_id: str, tournament_id: str) -> OrganizerRelation:
        """
        Remove an accepted organizer. Refused with SafetyViolationError when
        they are the tournament's only active organizer.
        """
        relation = await self.find_pair(user_id, tournament_id)
        if relation is None:
            raise NotFoundError('organizer_relation', f"{user_id}/{tournament_id}")

        if not relation.active:
            await self.decline_invite(relation.id)
            return relation

        self._transition(relation, 'remove')
        await self._require_organizer_safety(relation)

        if not await self.store.delete(ORGANIZER_RELATIONS, relation.id):
            raise NotFoundError('organizer_relation', relation.id)
        await self.adjust_organizer_count(tournament_id, -1)

        logger.info(f"Organizer {user_id} removed from tournament {tournament_id}")
        await self._publish(EventType.ORGANIZER_REMOVED, relation)
        return relation

    # ==================== Cascade support ====================

    async def delete_relation_record(self, relation: OrganizerRelation, adjust_counters: bool = True) -> bool:
        """Ungated delete for the cascade workflows; False if already gone."""
        removed = await self.store.delete(ORGANIZER_RELATIONS, relation.id)
        if removed and adjust_counters and relation.active:
            await self.adjust_organizer_count(relation.tournament_id, -1)
        return removed

    async def adjust_organizer_count(self, tournament_id: str, delta: int) -> Optional[int]:
        """Apply `delta` to the organizer counter with a floor of 1."""
        doc = await self.store.get(TOURNAMENTS, tournament_id)
        if doc is None:
            logger.info(f"Tournament {tournament_id} is gone; organizer count not adjusted")
            return None

        current = int(doc.get('organizer_count', 1))
        new_count = max(1, current + delta)
        if new_count != current:
            await self.store.update(TOURNAMENTS, tournament_id, {
                'organizer_count': new_count,
                'updated_at': encode_datetime(utcnow()),
            })
        return new_count

    # ==================== Helpers ====================

    async def _require_tournament(self, tournament_id: str) -> Tournament:
        doc = await self.store.get(TOURNAMENTS, tournament_id)
        if doc is None:
            raise NotFoundError('tournament', tournament_id)
        return Tournament.from_document(doc)

    async def _require_organizer_safety(self, relation: OrganizerRelation):
        if self.safety is None:
            raise RuntimeError("OrganizerRegistry has no safety checker configured")

        result = await self.safety.check_organizer_safety(
            relation.user_id, relation.tournament_id, SafetyAction.LEAVE_TOURNAMENT
        )
        if not result.can_proceed:
            raise SafetyViolationError(
                result.message,
                aggregate_type='tournament',
                aggregate_id=result.tournament_id,
                aggregate_name=result.tournament_name,
                privileged_count=result.organizer_count
            )

    def _transition(self, relation: OrganizerRelation, action: str, guard_context: dict = None):
        sm = OrganizerStateMachine.for_relation(relation)
        try:
            sm.transition(action, guard_context)
        except TransitionError as e:
            if action == 'accept' and e.to_state == RelationState.ACCEPTED.value:
                raise ValidationError("Tournament has reached its maximum number of organizers") from e
            raise ValidationError(e.reason) from e

    async def _publish(self, event_type: EventType, relation: OrganizerRelation, notify_user: bool = False):
        if not self.publisher:
            return
        event = organizer_event(event_type, relation)
        await self.publisher.publish_tournament_event(relation.tournament_id, event)
        if notify_user:
            await self.publisher.publish_user_notification(relation.user_id, event)
