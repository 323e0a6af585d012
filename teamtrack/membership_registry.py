import logging
from typing import List, Optional

from shared.events import EventType, membership_event
from shared.state_machine import MembershipStateMachine, TransitionError

from .errors import NotFoundError, SafetyViolationError, ValidationError
from .models import (
    LEGACY_FIELDS, MEMBERSHIPS, TEAMS, Membership, MembershipWithProfile, Role, Team,
    encode_datetime, utcnow
)
from .safety import SafetyAction
from .store import DocumentStore, query_any

logger = logging.getLogger(__name__)


class MembershipRegistry:
    """
    Owns the user <-> team relationship records.

    Removal of an accepted coach is always gated by the safety checker.
    The only ungated path is ``delete_membership_record``, reserved for
    the cascade workflows that destroy the parent team or user.
    """

    def __init__(self, store: DocumentStore, profiles, publisher=None, safety=None):
        self.store = store
        self.profiles = profiles
        self.publisher = publisher
        self.safety = safety

    # ==================== Reads ====================

    async def find_membership(self, membership_id: str) -> Optional[Membership]:
        doc = await self.store.get(MEMBERSHIPS, membership_id)
        return Membership.from_document(doc) if doc else None

    async def get_membership(self, membership_id: str) -> Membership:
        membership = await self.find_membership(membership_id)
        if membership is None:
            raise NotFoundError('membership', membership_id)
        return membership

    async def find_pair(self, user_id: str, team_id: str) -> Optional[Membership]:
        matches = await self._select('user_id', user_id, team_id=team_id)
        return matches[0] if matches else None

    async def list_by_user(self, user_id: str) -> List[Membership]:
        return await self._select('user_id', user_id)

    async def list_by_team(self, team_id: str) -> List[MembershipWithProfile]:
        """Memberships of a team joined with each member's profile (None if the profile is gone)."""
        memberships = await self._select('team_id', team_id)
        profiles = await self.profiles.get_profiles(m.user_id for m in memberships)
        return [MembershipWithProfile(m, profiles.get(m.user_id)) for m in memberships]

    async def list_team_memberships(self, team_id: str) -> List[Membership]:
        return await self._select('team_id', team_id)

    async def list_pending_invites(self, user_id: str) -> List[Membership]:
        return await self._select('user_id', user_id, invite_accepted=False)

    async def list_accepted_coaches(self, team_id: str) -> List[Membership]:
        return await self._select(
            'team_id', team_id, role=Role.COACH, active=True, invite_accepted=True
        )

    async def list_coached_by(self, user_id: str) -> List[Membership]:
        """Accepted, active coach memberships held by a user."""
        return await self._select(
            'user_id', user_id, role=Role.COACH, active=True, invite_accepted=True
        )

    async def _select(self, key: str, value: str, **attrs) -> List[Membership]:
        """
        Memberships whose `key` equals `value`, oldest first.

        Version-1 records spell their keys in camelCase and their roles in
        lower case, so only the reference key is matched in the store (in
        both spellings) and `attrs` are compared on the decoded records.
        """
        docs = await query_any(self.store, MEMBERSHIPS, (key, LEGACY_FIELDS[key]), value)
        memberships = [Membership.from_document(d) for d in docs]
        matched = [m for m in memberships if all(getattr(m, k) == v for k, v in attrs.items())]
        return sorted(matched, key=lambda m: m.joined_at)

    # ==================== Creation ====================

    async def add_membership(
        self,
        user_id: str,
        team_id: str,
        role,
        team_meta: Team = None
    ) -> Membership:
        """
        Directly add an accepted, active member.

        ``team_meta`` is passed on the team-creation path: the team was
        just written with its founder already counted, so the lookup and
        the coach counter increment are skipped.
        """
        role = Role.parse(role)
        if not user_id or not team_id:
            raise ValidationError("user_id and team_id are required")

        if team_meta is None:
            await self._require_team(team_id)
        if await self.find_pair(user_id, team_id):
            raise ValidationError(f"User {user_id} already belongs to team {team_id}")

        membership = Membership(
            user_id=user_id,
            team_id=team_id,
            role=role,
            active=True,
            invite_accepted=True
        )
        await self.store.set(MEMBERSHIPS, membership.id, membership.to_document())

        if team_meta is None and role == Role.COACH:
            await self.adjust_coach_count(team_id, 1)

        await self._publish(EventType.MEMBER_JOINED, membership)
        return membership

    async def invite_member(self, team_id: str, email: str, role) -> Membership:
        """Create a pending invite for the user registered under `email`."""
        role = Role.parse(role)
        if not email or not email.strip():
            raise ValidationError("Email is required")

        await self._require_team(team_id)
        profile = await self.profiles.find_by_email(email)
        if profile is None:
            raise NotFoundError('user', email, f"No user registered with email {email}")

        existing = await self.find_pair(profile.id, team_id)
        if existing:
            state = 'a pending invite' if existing.is_pending else 'a membership'
            raise ValidationError(f"User already has {state} for this team")

        membership = Membership(user_id=profile.id, team_id=team_id, role=role)
        await self.store.set(MEMBERSHIPS, membership.id, membership.to_document())

        await self._publish(EventType.MEMBER_INVITED, membership, notify_user=True)
        return membership

    # ==================== Lifecycle ====================

    async def accept_invite(self, membership_id: str) -> Membership:
        membership = await self.get_membership(membership_id)
        self._transition(membership, 'accept')

        doc = await self.store.update(MEMBERSHIPS, membership.id, {
            'active': True,
            'invite_accepted': True,
            'updated_at': encode_datetime(utcnow()),
        })
        membership = Membership.from_document(doc)

        # Coaches only count once they have accepted
        if membership.role == Role.COACH:
            await self.adjust_coach_count(membership.team_id, 1)

        await self._publish(EventType.MEMBER_JOINED, membership)
        return membership

    async def decline_invite(self, membership_id: str) -> None:
        membership = await self.get_membership(membership_id)
        self._transition(membership, 'decline')

        if not await self.store.delete(MEMBERSHIPS, membership.id):
            raise NotFoundError('membership', membership_id)
        await self._publish(EventType.MEMBER_DECLINED, membership)

    async def leave_team(self, membership_id: str) -> Membership:
        return await self.remove_membership_by_id(membership_id)

    async def remove_membership(self, user_id: str, team_id: str) -> Membership:
        membership = await self.find_pair(user_id, team_id)
        if membership is None:
            raise NotFoundError('membership', f"{user_id}/{team_id}")
        return await self.remove_membership_by_id(membership.id)

    async def remove_membership_by_id(self, membership_id: str) -> Membership:
        """
        Remove a membership, refusing when it is the team's last accepted coach.
        Removing an id that is already gone raises NotFoundError every time.
        """
        membership = await self.get_membership(membership_id)
        self._transition(membership, 'remove')

        if membership.is_accepted_coach:
            await self._require_coach_safety(membership)

        if not await self.store.delete(MEMBERSHIPS, membership.id):
            raise NotFoundError('membership', membership_id)

        if membership.is_accepted_coach:
            await self.adjust_coach_count(membership.team_id, -1)

        logger.info(f"Membership {membership.id} removed ({membership.user_id} left {membership.team_id})")
        await self._publish(EventType.MEMBER_REMOVED, membership)
        return membership

    async def update_role(self, membership_id: str, new_role) -> Membership:
        new_role = Role.parse(new_role)
        membership = await self.get_membership(membership_id)
        self._transition(membership, 'change_role')

        if membership.role == new_role:
            return membership

        # Demoting the last coach voids the invariant just like leaving
        if membership.is_accepted_coach and new_role != Role.COACH:
            await self._require_coach_safety(membership)

        old_role = membership.role
        doc = await self.store.update(MEMBERSHIPS, membership.id, {
            'role': new_role.value,
            'updated_at': encode_datetime(utcnow()),
        })
        updated = Membership.from_document(doc)

        delta = 0
        if old_role == Role.COACH:
            delta -= 1
        if new_role == Role.COACH:
            delta += 1
        if delta and updated.active:
            await self.adjust_coach_count(updated.team_id, delta)

        await self._publish(EventType.ROLE_CHANGED, updated)
        return updated

    # ==================== Cascade support ====================

    async def delete_membership_record(self, membership: Membership, adjust_counters: bool = True) -> bool:
        """
        Ungated hard delete used only by the cascade workflows.
        Returns False when the record was already gone; counters are only
        touched when this call actually removed it.
        """
        removed = await self.store.delete(MEMBERSHIPS, membership.id)
        if removed and adjust_counters and membership.is_accepted_coach:
            await self.adjust_coach_count(membership.team_id, -1)
        return removed

    async def adjust_coach_count(self, team_id: str, delta: int) -> Optional[int]:
        """Apply `delta` to the team's coach counter, never going below 1."""
        doc = await self.store.get(TEAMS, team_id)
        if doc is None:
            logger.info(f"Team {team_id} is gone; coach count not adjusted")
            return None

        current = int(doc.get('coach_count', 1))
        new_count = max(1, current + delta)
        if new_count != current:
            await self.store.update(TEAMS, team_id, {
                'coach_count': new_count,
                'updated_at': encode_datetime(utcnow()),
            })
        return new_count

    # ==================== Helpers ====================

    async def _require_team(self, team_id: str) -> dict:
        doc = await self.store.get(TEAMS, team_id)
        if doc is None:
            raise NotFoundError('team', team_id)
        return doc

    async def _require_coach_safety(self, membership: Membership):
        if self.safety is None:
            raise RuntimeError("MembershipRegistry has no safety checker configured")

        result = await self.safety.check_coach_safety(
            membership.user_id, SafetyAction.LEAVE_TEAM, team_id=membership.team_id
        )
        if not result.can_proceed:
            raise SafetyViolationError(
                result.message,
                aggregate_type='team',
                aggregate_id=result.team_id,
                aggregate_name=result.team_name,
                privileged_count=result.coach_count
            )

    def _transition(self, membership: Membership, action: str):
        sm = MembershipStateMachine.for_membership(membership)
        try:
            sm.transition(action)
        except TransitionError as e:
            raise ValidationError(e.reason) from e

    async def _publish(self, event_type: EventType, membership: Membership, notify_user: bool = False):
        if not self.publisher:
            return
        event = membership_event(event_type, membership)
        await self.publisher.publish_team_event(membership.team_id, event)
        if notify_user:
            await self.publisher.publish_user_notification(membership.user_id, event)
