import logging
from typing import List, Optional

from .errors import NotFoundError, ValidationError
from .models import TEAMS, Role, Team, TeamStatus, encode_datetime, pick_changes, utcnow
from .store import DocumentStore, eq

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'sport', 'age_group', 'description')


class TeamRegistry:
    """
    Team documents:
    - Create a team together with its founding coach membership
    - Look up, list and edit teams
    - Deactivate and finally delete a team during termination
    """

    def __init__(self, store: DocumentStore, memberships):
        self.store = store
        self.memberships = memberships

    async def create_team(
        self,
        name: str,
        created_by: str,
        sport: str = None,
        age_group: str = None,
        description: str = None
    ) -> Team:
        """Create a team; the creator becomes its first, already accepted coach."""
        if not name or not name.strip():
            raise ValidationError("Team name is required")
        if not created_by:
            raise ValidationError("created_by is required")

        team = Team(
            name=name.strip(),
            created_by=created_by,
            sport=sport,
            age_group=age_group,
            description=description,
            coach_count=1
        )
        await self.store.set(TEAMS, team.id, team.to_document())
        await self.memberships.add_membership(created_by, team.id, Role.COACH, team_meta=team)

        logger.info(f"Team {team.id} created by {created_by}")
        return team

    async def find_team(self, team_id: str) -> Optional[Team]:
        doc = await self.store.get(TEAMS, team_id)
        return Team.from_document(doc) if doc else None

    async def get_team(self, team_id: str) -> Team:
        team = await self.find_team(team_id)
        if team is None:
            raise NotFoundError('team', team_id)
        return team

    async def list_teams(self, active_only: bool = True, limit: int = 50, offset: int = 0) -> List[Team]:
        where = [eq('is_active', True)] if active_only else []
        docs = await self.store.query(
            TEAMS, where, order_by='created_at', descending=True, limit=limit, offset=offset
        )
        return [Team.from_document(d) for d in docs]

    async def update_team(self, team_id: str, changes: dict) -> Team:
        """Edit the descriptive fields of an active team."""
        team = await self.get_team(team_id)
        if not team.is_active:
            raise ValidationError(f"Team {team.name} is no longer active")

        updates = pick_changes(changes, EDITABLE_FIELDS)
        if 'name' in updates:
            if not updates['name'] or not str(updates['name']).strip():
                raise ValidationError("Team name is required")
            updates['name'] = str(updates['name']).strip()
        updates['updated_at'] = encode_datetime(utcnow())

        doc = await self.store.update(TEAMS, team_id, updates)
        return Team.from_document(doc)

    async def deactivate_team(self, team_id: str) -> Team:
        doc = await self.store.update(TEAMS, team_id, {
            'is_active': False,
            'status': TeamStatus.DISBANDED.value,
            'updated_at': encode_datetime(utcnow()),
        })
        return Team.from_document(doc)

    async def delete_team_document(self, team_id: str) -> bool:
        return await self.store.delete(TEAMS, team_id)
