import logging
from typing import List, Optional

from shared.events import Event, EventType

from .errors import NotFoundError, ValidationError
from .models import (
    LEGACY_FIELDS, TEAMS, TOURNAMENT_INVITES, TOURNAMENTS, Tournament, TournamentInvite,
    encode_datetime, pick_changes, utcnow
)
from .store import DocumentStore, eq, query_any

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'description', 'max_size', 'max_organizers')


class TournamentRegistry:
    """
    Manages tournament records:
    - Create and edit tournaments, the creator becoming the first organizer
    - Invite, register and withdraw teams
    - Unlink teams and delete the tournament document during cascades
    """

    def __init__(self, store: DocumentStore, organizers, publisher=None):
        self.store = store
        self.organizers = organizers
        self.publisher = publisher

    def _default_max_organizers(self) -> int:
        return self.organizers.default_max_organizers

    async def create_tournament(
        self,
        name: str,
        created_by: str,
        max_size: int = 16,
        description: str = None,
        max_organizers: int = None
    ) -> Tournament:
        """Create a tournament; the creator becomes its first active organizer."""
        if not name or not name.strip():
            raise ValidationError("Tournament name is required")
        if not created_by:
            raise ValidationError("created_by is required")
        if max_organizers is None:
            max_organizers = self._default_max_organizers()
        try:
            max_size = int(max_size)
            max_organizers = int(max_organizers)
        except (TypeError, ValueError):
            raise ValidationError("max_size and max_organizers must be integers")
        if max_size < 2:
            raise ValidationError("max_size must be at least 2")
        if max_organizers < 1:
            raise ValidationError("max_organizers must be at least 1")

        tournament = Tournament(
            name=name.strip(),
            max_size=max_size,
            description=description,
            organizer_count=1,
            max_organizers=max_organizers
        )
        await self.store.set(TOURNAMENTS, tournament.id, tournament.to_document())
        await self.organizers.add_organizer(created_by, tournament.id)

        logger.info(f"Tournament {tournament.id} created by {created_by}")
        return tournament

    async def find_tournament(self, tournament_id: str) -> Optional[Tournament]:
        doc = await self.store.get(TOURNAMENTS, tournament_id)
        return Tournament.from_document(doc) if doc else None

    async def get_tournament(self, tournament_id: str) -> Tournament:
        """Get tournament by id."""
        tournament = await self.find_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError('tournament', tournament_id)
        return tournament

    async def list_tournaments(
        self,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments, newest first."""
        where = [eq('is_active', True)] if active_only else []
        docs = await self.store.query(
            TOURNAMENTS, where, order_by='created_at', descending=True, limit=limit, offset=offset
        )
        return [Tournament.from_document(d) for d in docs]

    async def update_tournament(self, tournament_id: str, changes: dict) -> Tournament:
        """
        Edit an active tournament. Limits can never drop below what the
        tournament already holds.
        """
        tournament = await self.get_tournament(tournament_id)
        if not tournament.is_active:
            raise ValidationError(f"Tournament {tournament.name} is being deleted")

        updates = pick_changes(changes, EDITABLE_FIELDS)
        if 'name' in updates:
            if not updates['name'] or not str(updates['name']).strip():
                raise ValidationError("Tournament name is required")
            updates['name'] = str(updates['name']).strip()

        try:
            for key in ('max_size', 'max_organizers'):
                if key in updates:
                    updates[key] = int(updates[key])
        except (TypeError, ValueError):
            raise ValidationError("max_size and max_organizers must be integers")

        if updates.get('max_size', tournament.max_size) < max(2, tournament.team_count):
            raise ValidationError(
                f"max_size must be at least 2 and at least the {tournament.team_count} registered teams"
            )
        if updates.get('max_organizers', tournament.max_organizers) < tournament.organizer_count:
            raise ValidationError(
                f"max_organizers cannot be below the current {tournament.organizer_count} organizers"
            )

        updates['updated_at'] = encode_datetime(utcnow())
        doc = await self.store.update(TOURNAMENTS, tournament_id, updates)
        return Tournament.from_document(doc)

    async def deactivate_tournament(self, tournament_id: str) -> Tournament:
        doc = await self.store.update(TOURNAMENTS, tournament_id, {
            'is_active': False,
            'updated_at': encode_datetime(utcnow()),
        })
        return Tournament.from_document(doc)

    # ==================== Team registration ====================

    async def find_team_invite(self, invite_id: str) -> Optional[TournamentInvite]:
        doc = await self.store.get(TOURNAMENT_INVITES, invite_id)
        return TournamentInvite.from_document(doc) if doc else None

    async def get_team_invite(self, invite_id: str) -> TournamentInvite:
        invite = await self.find_team_invite(invite_id)
        if invite is None:
            raise NotFoundError('tournament_invite', invite_id)
        return invite

    async def list_team_invites(self, tournament_id: str, active: bool = None) -> List[TournamentInvite]:
        if active is None:
            return await self._select_invites('tournament_id', tournament_id)
        return await self._select_invites('tournament_id', tournament_id, active=active)

    async def list_invites_for_team(self, team_id: str) -> List[TournamentInvite]:
        return await self._select_invites('team_id', team_id)

    async def _select_invites(self, key: str, value: str, **attrs) -> List[TournamentInvite]:
        docs = await query_any(self.store, TOURNAMENT_INVITES, (key, LEGACY_FIELDS[key]), value)
        invites = [TournamentInvite.from_document(d) for d in docs]
        matched = [i for i in invites if all(getattr(i, k) == v for k, v in attrs.items())]
        return sorted(matched, key=lambda i: i.created_at)

    async def invite_team(self, tournament_id: str, team_id: str) -> TournamentInvite:
        tournament = await self.get_tournament(tournament_id)
        if await self.store.get(TEAMS, team_id) is None:
            raise NotFoundError('team', team_id)

        if tournament.is_full:
            raise ValidationError(
                f"Tournament is already at maximum capacity "
                f"({tournament.team_count}/{tournament.max_size} teams)"
            )

        if await self._select_invites('team_id', team_id, tournament_id=tournament_id):
            raise ValidationError("Team has already been invited to this tournament")

        invite = TournamentInvite(team_id=team_id, tournament_id=tournament_id)
        await self.store.set(TOURNAMENT_INVITES, invite.id, invite.to_document())

        await self._publish(EventType.TEAM_INVITED, invite)
        return invite

    async def accept_team_invite(self, invite_id: str) -> TournamentInvite:
        invite = await self.get_team_invite(invite_id)
        if invite.active:
            raise ValidationError("Team is already registered in this tournament")

        tournament = await self.get_tournament(invite.tournament_id)
        if tournament.is_full:
            raise ValidationError(
                f"Tournament is already at maximum capacity "
                f"({tournament.team_count}/{tournament.max_size} teams)"
            )

        doc = await self.store.update(TOURNAMENT_INVITES, invite.id, {'active': True})
        invite = TournamentInvite.from_document(doc)

        team_ids = list(tournament.team_ids)
        if invite.team_id not in team_ids:
            team_ids.append(invite.team_id)
        await self.store.update(TOURNAMENTS, tournament.id, {
            'team_ids': team_ids,
            'team_count': tournament.team_count + 1,
            'updated_at': encode_datetime(utcnow()),
        })

        await self._publish(EventType.TEAM_REGISTERED, invite)
        return invite

    async def decline_team_invite(self, invite_id: str) -> None:
        invite = await self.get_team_invite(invite_id)
        if invite.active:
            raise ValidationError("Accepted registrations must be withdrawn, not declined")
        if not await self.store.delete(TOURNAMENT_INVITES, invite.id):
            raise NotFoundError('tournament_invite', invite_id)

    async def withdraw_team(self, tournament_id: str, team_id: str) -> TournamentInvite:
        matches = await self._select_invites('team_id', team_id, tournament_id=tournament_id)
        if not matches:
            raise NotFoundError('tournament_invite', f"{team_id}/{tournament_id}")

        invite = matches[0]
        await self.delete_invite_record(invite)

        await self._publish(EventType.TEAM_WITHDRAWN, invite)
        return invite

    # ==================== Cascade support ====================

    async def delete_invite_record(self, invite: TournamentInvite, unlink: bool = True) -> bool:
        """Delete an invite; an accepted one also leaves the tournament's team list."""
        removed = await self.store.delete(TOURNAMENT_INVITES, invite.id)
        if removed and unlink and invite.active:
            await self.unlink_team(invite.tournament_id, invite.team_id)
        return removed

    async def unlink_team(self, tournament_id: str, team_id: str) -> bool:
        """Drop a team from the tournament's team list. Returns False if it was not linked."""
        doc = await self.store.get(TOURNAMENTS, tournament_id)
        if doc is None:
            return False

        tournament = Tournament.from_document(doc)
        if team_id not in tournament.team_ids:
            return False

        team_ids = [t for t in tournament.team_ids if t != team_id]
        await self.store.update(TOURNAMENTS, tournament_id, {
            'team_ids': team_ids,
            'team_count': max(0, tournament.team_count - 1),
            'updated_at': encode_datetime(utcnow()),
        })
        return True

    async def delete_tournament_document(self, tournament_id: str) -> bool:
        return await self.store.delete(TOURNAMENTS, tournament_id)

    async def _publish(self, event_type: EventType, invite: TournamentInvite):
        if not self.publisher:
            return
        event = Event(
            type=event_type,
            aggregate_id=invite.tournament_id,
            data={'invite_id': invite.id, 'team_id': invite.team_id}
        )
        await self.publisher.publish_tournament_event(invite.tournament_id, event)
