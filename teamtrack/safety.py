import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ValidationError
from .models import TEAMS, TOURNAMENTS
from .store import DocumentStore

logger = logging.getLogger(__name__)

PROCEED_MESSAGE = "You can safely proceed with this action."


class SafetyAction(str, Enum):
    LEAVE_TEAM = "LEAVE_TEAM"
    DELETE_ACCOUNT = "DELETE_ACCOUNT"
    LEAVE_TOURNAMENT = "LEAVE_TOURNAMENT"

    @classmethod
    def parse(cls, value) -> "SafetyAction":
        if isinstance(value, SafetyAction):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            allowed = ', '.join(a.value for a in cls)
            raise ValidationError(f"Invalid action '{value}'. Expected one of: {allowed}")


@dataclass
class CoachSafetyResult:
    can_proceed: bool
    message: str
    action: SafetyAction
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    coach_count: int = 0

    def to_dict(self) -> dict:
        return {
            'can_proceed': self.can_proceed,
            'message': self.message,
            'action': self.action.value,
            'team_id': self.team_id,
            'team_name': self.team_name,
            'coach_count': self.coach_count,
        }


@dataclass
class OrganizerSafetyResult:
    can_proceed: bool
    message: str
    action: SafetyAction
    tournament_id: Optional[str] = None
    tournament_name: Optional[str] = None
    organizer_count: int = 0

    def to_dict(self) -> dict:
        return {
            'can_proceed': self.can_proceed,
            'message': self.message,
            'action': self.action.value,
            'tournament_id': self.tournament_id,
            'tournament_name': self.tournament_name,
            'organizer_count': self.organizer_count,
        }


class SafetyInvariantChecker:
    """
    Read-only gate deciding whether removing a user's privileged
    relation would leave a team without an accepted coach or a
    tournament without an active organizer.

    Counts are taken from the live relation records, not from the
    denormalized counters. No locking is done: two concurrent removals
    can both observe a count of 2 and both proceed. That race is
    accepted.
    """

    def __init__(self, memberships, organizers, store: DocumentStore):
        self.memberships = memberships
        self.organizers = organizers
        self.store = store

    # ==================== Coaches ====================

    async def check_coach_safety(self, user_id: str, action, team_id: str = None) -> CoachSafetyResult:
        action = SafetyAction.parse(action)
        if action not in (SafetyAction.LEAVE_TEAM, SafetyAction.DELETE_ACCOUNT):
            raise ValidationError(f"{action.value} is not a coach action")
        if action == SafetyAction.LEAVE_TEAM and not team_id:
            raise ValidationError("team_id is required to check LEAVE_TEAM")

        coached = await self.memberships.list_coached_by(user_id)
        if action == SafetyAction.LEAVE_TEAM:
            coached = [m for m in coached if m.team_id == team_id]

        last_count = 0
        for membership in coached:
            coaches = await self.memberships.list_accepted_coaches(membership.team_id)
            last_count = len(coaches)

            if last_count <= 1:
                team_name = await self._name_of(TEAMS, membership.team_id, 'Unknown Team')
                verb = "delete your account" if action == SafetyAction.DELETE_ACCOUNT else "leave the team"
                message = (
                    f"You are the only coach of '{team_name}'. You must either promote "
                    f"someone else to coach or delete the team before you can {verb}."
                )
                logger.info(f"Coach safety refused {action.value} for {user_id}: sole coach of {membership.team_id}")
                return CoachSafetyResult(
                    can_proceed=False,
                    message=message,
                    action=action,
                    team_id=membership.team_id,
                    team_name=team_name,
                    coach_count=last_count
                )

        return CoachSafetyResult(
            can_proceed=True,
            message=PROCEED_MESSAGE,
            action=action,
            team_id=team_id,
            coach_count=last_count if action == SafetyAction.LEAVE_TEAM else 0
        )

    # ==================== Organizers ====================

    async def check_organizer_safety(self, user_id: str, tournament_id: str, action) -> OrganizerSafetyResult:
        action = SafetyAction.parse(action)
        if action not in (SafetyAction.LEAVE_TOURNAMENT, SafetyAction.DELETE_ACCOUNT):
            raise ValidationError(f"{action.value} is not an organizer action")

        active = await self.organizers.list_active_relations(tournament_id)
        count = len(active)
        is_organizer = any(r.user_id == user_id for r in active)

        if is_organizer and count <= 1:
            tournament_name = await self._name_of(TOURNAMENTS, tournament_id, 'Unknown Tournament')
            if action == SafetyAction.DELETE_ACCOUNT:
                message = (
                    "Cannot delete account - you are the last organizer of "
                    f"'{tournament_name}'. Please invite other organizers or delete the tournament first."
                )
            else:
                message = (
                    "Cannot remove the last organizer. Please invite other organizers "
                    "or delete the tournament first."
                )
            logger.info(f"Organizer safety refused {action.value} for {user_id}: sole organizer of {tournament_id}")
            return OrganizerSafetyResult(
                can_proceed=False,
                message=message,
                action=action,
                tournament_id=tournament_id,
                tournament_name=tournament_name,
                organizer_count=count
            )

        return OrganizerSafetyResult(
            can_proceed=True,
            message=PROCEED_MESSAGE,
            action=action,
            tournament_id=tournament_id,
            organizer_count=count
        )

    async def first_blocking_tournament(self, user_id: str) -> Optional[OrganizerSafetyResult]:
        """The first tournament the user solely organizes, if any."""
        for tournament_id in await self.organizers.list_tournaments_organized_by(user_id):
            result = await self.check_organizer_safety(user_id, tournament_id, SafetyAction.DELETE_ACCOUNT)
            if not result.can_proceed:
                return result
        return None

    async def check_user_can_be_removed_from_all_tournaments(self, user_id: str) -> bool:
        """All-or-nothing gate used before account deletion."""
        return await self.first_blocking_tournament(user_id) is None

    async def _name_of(self, collection: str, doc_id: str, fallback: str) -> str:
        doc = await self.store.get(collection, doc_id)
        if not doc:
            return fallback
        return doc.get('name') or doc.get('teamName') or fallback
