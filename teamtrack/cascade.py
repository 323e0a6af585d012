"""
Multi-stage deletion workflows.

Each workflow is an ordered list of named stages. A stage first
enumerates the records it has to remove and turns them into
``CascadeTask``s, then runs the tasks one by one. Tasks are idempotent:
deleting an already-deleted record is a no-op that returns False, and
counters are only adjusted when a delete actually removed something, so
re-running a stage never double-applies its effects.

Nothing here is transactional. A crash between stages leaves the
earlier stages applied; ``retry_stage`` re-runs the failed one. The first
stage of every workflow deactivates its target, and that persisted flag
is what marks a deletion as started: stages are only retried for targets
that are already deactivated or gone.
"""
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Dict, List

from shared.events import Event, EventType, cascade_completed_event

from .errors import (
    CascadeStageError, NotFoundError, PartialCascadeWarning,
    SafetyViolationError, ValidationError
)
from .models import AVAILABILITIES, CHAT_MESSAGES, CHAT_ROOMS, EVENTS, LEGACY_FIELDS, TASKS
from .safety import SafetyAction
from .store import DocumentStore, query_any

logger = logging.getLogger(__name__)

DELETE_USER_ACCOUNT = 'delete_user_account'
TERMINATE_TEAM = 'terminate_team'
DELETE_TOURNAMENT = 'delete_tournament'


@dataclass
class CascadeTask:
    description: str
    action: Callable[[], Awaitable[bool]]
    critical: bool = False


@dataclass
class CascadeReport:
    workflow: str
    target_id: str
    completed_stages: List[str] = field(default_factory=list)
    deleted: Dict[str, int] = field(default_factory=dict)
    warnings: List[PartialCascadeWarning] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())

    def to_dict(self) -> dict:
        return {
            'workflow': self.workflow,
            'target_id': self.target_id,
            'completed_stages': list(self.completed_stages),
            'deleted': dict(self.deleted),
            'warnings': [str(w) for w in self.warnings],
        }


class CascadeOrchestrator:
    """
    Runs account deletion, team termination and tournament deletion.

    Only the two safety gates of account deletion are hard aborts that
    happen before any mutation. After that, a failing dependent record
    is logged as a PartialCascadeWarning and skipped; a stage that cannot
    even enumerate its records, or a failing critical task, raises
    CascadeStageError naming the stage.
    """

    def __init__(
        self,
        store: DocumentStore,
        memberships,
        organizers,
        teams,
        tournaments,
        profiles,
        identity,
        safety,
        publisher=None
    ):
        self.store = store
        self.memberships = memberships
        self.organizers = organizers
        self.teams = teams
        self.tournaments = tournaments
        self.profiles = profiles
        self.identity = identity
        self.safety = safety
        self.publisher = publisher

        self.workflows = {
            DELETE_USER_ACCOUNT: [
                ('deactivate_profile', self._profile_deactivation),
                ('memberships', self._user_memberships),
                ('organizer_relations', self._user_organizer_relations),
                ('identity', self._user_identity),
                ('profile', self._user_profile),
            ],
            TERMINATE_TEAM: [
                ('deactivate_team', self._team_deactivation),
                ('events', self._team_events),
                ('availabilities', partial(self._team_dependents, AVAILABILITIES)),
                ('tasks', partial(self._team_dependents, TASKS)),
                ('chat_messages', partial(self._team_dependents, CHAT_MESSAGES)),
                ('chat_rooms', partial(self._team_dependents, CHAT_ROOMS)),
                ('tournament_invites', self._team_tournament_invites),
                ('memberships', self._team_memberships),
                ('team_document', self._team_document),
            ],
            DELETE_TOURNAMENT: [
                ('deactivate_tournament', self._tournament_deactivation),
                ('organizer_relations', self._tournament_organizer_relations),
                ('tournament_invites', self._tournament_invites),
                ('tournament_document', self._tournament_document),
            ],
        }

    def stage_names(self, workflow: str) -> List[str]:
        if workflow not in self.workflows:
            raise ValidationError(f"Unknown cascade workflow: {workflow}")
        return [name for name, _ in self.workflows[workflow]]

    # ==================== Workflows ====================

    async def delete_user_account(self, user_id: str) -> CascadeReport:
        """Delete a user and everything hanging off them, if no team or tournament would be orphaned."""
        await self.profiles.get_profile(user_id)
        await self._require_account_gates(user_id)

        report = await self._run(DELETE_USER_ACCOUNT, user_id)
        await self._publish_completed(EventType.ACCOUNT_DELETED, report)
        return report

    async def terminate_team(self, team_id: str) -> CascadeReport:
        await self.teams.get_team(team_id)
        report = await self._run(TERMINATE_TEAM, team_id)
        await self._publish_completed(EventType.TEAM_TERMINATED, report)
        return report

    async def delete_tournament(self, tournament_id: str) -> CascadeReport:
        await self.tournaments.get_tournament(tournament_id)
        report = await self._run(DELETE_TOURNAMENT, tournament_id)
        await self._publish_completed(EventType.TOURNAMENT_DELETED, report)
        return report

    async def retry_stage(self, workflow: str, target_id: str, stage: str) -> CascadeReport:
        """
        Re-run one stage of a workflow that failed part way.

        Only targets whose deletion has started (deactivated, or already
        gone) can be retried; a live target has to go through the full
        workflow. Account deletions also re-run both safety gates, which
        pass trivially once the user's memberships are gone.
        """
        planners = dict(self.workflows.get(workflow, []))
        if not planners:
            raise ValidationError(f"Unknown cascade workflow: {workflow}")
        if stage not in planners:
            raise ValidationError(f"Unknown stage '{stage}' for {workflow}")

        await self._require_started(workflow, target_id)
        if workflow == DELETE_USER_ACCOUNT:
            await self._require_account_gates(target_id)

        report = CascadeReport(workflow=workflow, target_id=target_id)
        await self._run_stage(report, stage, planners[stage])
        return report

    # ==================== Gates ====================

    async def _require_started(self, workflow: str, target_id: str):
        if workflow == DELETE_USER_ACCOUNT:
            target = await self.profiles.find_profile(target_id)
        elif workflow == TERMINATE_TEAM:
            target = await self.teams.find_team(target_id)
        else:
            target = await self.tournaments.find_tournament(target_id)

        if target is not None and target.is_active:
            raise ValidationError(
                f"{workflow} has not been started for {target_id}; run the whole workflow instead of a single stage"
            )

    async def _require_account_gates(self, user_id: str):
        # Same rule as check_user_can_be_removed_from_all_tournaments, keeping the offender
        blocking = await self.safety.first_blocking_tournament(user_id)
        if blocking is not None:
            await self._notify_blocked(user_id, blocking.to_dict())
            raise SafetyViolationError(
                blocking.message,
                aggregate_type='tournament',
                aggregate_id=blocking.tournament_id,
                aggregate_name=blocking.tournament_name,
                privileged_count=blocking.organizer_count
            )

        coach_check = await self.safety.check_coach_safety(user_id, SafetyAction.DELETE_ACCOUNT)
        if not coach_check.can_proceed:
            await self._notify_blocked(user_id, coach_check.to_dict())
            raise SafetyViolationError(
                coach_check.message,
                aggregate_type='team',
                aggregate_id=coach_check.team_id,
                aggregate_name=coach_check.team_name,
                privileged_count=coach_check.coach_count
            )

    # ==================== Engine ====================

    async def _run(self, workflow: str, target_id: str) -> CascadeReport:
        report = CascadeReport(workflow=workflow, target_id=target_id)
        logger.info(f"Starting {workflow} for {target_id}")

        for stage, planner in self.workflows[workflow]:
            await self._run_stage(report, stage, planner)

        logger.info(
            f"Finished {workflow} for {target_id}: {report.total_deleted} records, "
            f"{len(report.warnings)} warnings"
        )
        return report

    async def _run_stage(self, report: CascadeReport, stage: str, planner):
        workflow, target_id = report.workflow, report.target_id

        try:
            tasks = await planner(target_id)
        except Exception as e:
            logger.error(f"{workflow} could not enumerate stage '{stage}' for {target_id}: {e}")
            raise CascadeStageError(workflow, stage, target_id, e) from e

        logger.info(f"{workflow} stage '{stage}' for {target_id}: {len(tasks)} tasks")

        deleted = 0
        for task in tasks:
            try:
                if await task.action():
                    deleted += 1
            except Exception as e:
                if task.critical:
                    logger.error(f"{workflow} stage '{stage}' failed on {task.description}: {e}")
                    raise CascadeStageError(workflow, stage, target_id, e) from e

                warning = PartialCascadeWarning(f"{stage}: could not remove {task.description}: {e}")
                logger.warning(f"PartialCascadeWarning in {workflow} for {target_id}: {warning}")
                report.warnings.append(warning)

        report.deleted[stage] = report.deleted.get(stage, 0) + deleted
        report.completed_stages.append(stage)

    # ==================== Account stages ====================

    async def _profile_deactivation(self, user_id: str) -> List[CascadeTask]:
        async def deactivate() -> bool:
            profile = await self.profiles.find_profile(user_id)
            if profile is None or not profile.is_active:
                return False
            await self.profiles.deactivate_profile(user_id)
            return True

        return [CascadeTask(f"profile {user_id}", deactivate, critical=True)]

    async def _user_memberships(self, user_id: str) -> List[CascadeTask]:
        return [
            CascadeTask(f"membership {m.id}", partial(self.memberships.delete_membership_record, m))
            for m in await self.memberships.list_by_user(user_id)
        ]

    async def _user_organizer_relations(self, user_id: str) -> List[CascadeTask]:
        return [
            CascadeTask(f"organizer relation {r.id}", partial(self.organizers.delete_relation_record, r))
            for r in await self.organizers.list_relations_for_user(user_id)
        ]

    async def _user_identity(self, user_id: str) -> List[CascadeTask]:
        async def delete_identity() -> bool:
            try:
                await self.identity.delete_identity(user_id)
            except NotFoundError:
                return False
            return True

        return [CascadeTask(f"identity {user_id}", delete_identity, critical=True)]

    async def _user_profile(self, user_id: str) -> List[CascadeTask]:
        return [CascadeTask(f"profile {user_id}", partial(self.profiles.delete_profile, user_id), critical=True)]

    # ==================== Team stages ====================

    async def _team_deactivation(self, team_id: str) -> List[CascadeTask]:
        async def deactivate() -> bool:
            team = await self.teams.find_team(team_id)
            if team is None or not team.is_active:
                return False
            await self.teams.deactivate_team(team_id)
            return True

        return [CascadeTask(f"team {team_id}", deactivate, critical=True)]

    async def _query_team_records(self, collection: str, team_id: str) -> List[dict]:
        # Dependent records may still carry the camelCase layout
        return await query_any(self.store, collection, ('team_id', LEGACY_FIELDS['team_id']), team_id)

    def _delete_task(self, collection: str, doc_id: str, label: str = None) -> CascadeTask:
        return CascadeTask(
            f"{label or collection} {doc_id}",
            partial(self.store.delete, collection, doc_id)
        )

    async def _team_events(self, team_id: str) -> List[CascadeTask]:
        tasks = []
        for event in await self._query_team_records(EVENTS, team_id):
            tournament_id = event.get('tournament_id') or event.get('tournamentId')
            opponent_id = event.get('opposing_team_id') or event.get('opposingTeamId')

            # A fixture between two teams is stored once per side
            if tournament_id and opponent_id:
                for partner in await self._query_team_records(EVENTS, opponent_id):
                    partner_tournament = partner.get('tournament_id') or partner.get('tournamentId')
                    partner_opponent = partner.get('opposing_team_id') or partner.get('opposingTeamId')
                    if partner_tournament != tournament_id or partner_opponent != team_id:
                        continue
                    for availability in await self._query_event_records(AVAILABILITIES, partner['id']):
                        tasks.append(self._delete_task(AVAILABILITIES, availability['id'], 'partner availability'))
                    tasks.append(self._delete_task(EVENTS, partner['id'], 'partner event'))

            tasks.append(self._delete_task(EVENTS, event['id'], 'event'))
        return tasks

    async def _query_event_records(self, collection: str, event_id: str) -> List[dict]:
        return await query_any(self.store, collection, ('event_id', LEGACY_FIELDS['event_id']), event_id)

    async def _team_dependents(self, collection: str, team_id: str) -> List[CascadeTask]:
        return [
            self._delete_task(collection, doc['id'])
            for doc in await self._query_team_records(collection, team_id)
        ]

    async def _team_tournament_invites(self, team_id: str) -> List[CascadeTask]:
        return [
            CascadeTask(f"tournament invite {i.id}", partial(self.tournaments.delete_invite_record, i))
            for i in await self.tournaments.list_invites_for_team(team_id)
        ]

    async def _team_memberships(self, team_id: str) -> List[CascadeTask]:
        # The team is going away; its coach counter no longer matters
        return [
            CascadeTask(
                f"membership {m.id}",
                partial(self.memberships.delete_membership_record, m, adjust_counters=False)
            )
            for m in await self.memberships.list_team_memberships(team_id)
        ]

    async def _team_document(self, team_id: str) -> List[CascadeTask]:
        return [CascadeTask(f"team {team_id}", partial(self.teams.delete_team_document, team_id), critical=True)]

    # ==================== Tournament stages ====================

    async def _tournament_deactivation(self, tournament_id: str) -> List[CascadeTask]:
        async def deactivate() -> bool:
            tournament = await self.tournaments.find_tournament(tournament_id)
            if tournament is None or not tournament.is_active:
                return False
            await self.tournaments.deactivate_tournament(tournament_id)
            return True

        return [CascadeTask(f"tournament {tournament_id}", deactivate, critical=True)]

    async def _tournament_organizer_relations(self, tournament_id: str) -> List[CascadeTask]:
        return [
            CascadeTask(
                f"organizer relation {r.id}",
                partial(self.organizers.delete_relation_record, r, adjust_counters=False)
            )
            for r in await self.organizers.list_tournament_relations(tournament_id)
        ]

    async def _tournament_invites(self, tournament_id: str) -> List[CascadeTask]:
        return [
            CascadeTask(
                f"tournament invite {i.id} (team {i.team_id})",
                partial(self.tournaments.delete_invite_record, i, unlink=False)
            )
            for i in await self.tournaments.list_team_invites(tournament_id)
        ]

    async def _tournament_document(self, tournament_id: str) -> List[CascadeTask]:
        return [CascadeTask(
            f"tournament {tournament_id}",
            partial(self.tournaments.delete_tournament_document, tournament_id),
            critical=True
        )]

    # ==================== Notifications ====================

    async def _publish_completed(self, event_type: EventType, report: CascadeReport):
        if not self.publisher:
            return
        event = cascade_completed_event(event_type, report.target_id, report.to_dict())
        if event_type == EventType.TEAM_TERMINATED:
            await self.publisher.publish_team_event(report.target_id, event)
        elif event_type == EventType.TOURNAMENT_DELETED:
            await self.publisher.publish_tournament_event(report.target_id, event)
        else:
            await self.publisher.publish_user_notification(report.target_id, event)

    async def _notify_blocked(self, user_id: str, detail: dict):
        if not self.publisher:
            return
        await self.publisher.publish_user_notification(
            user_id, Event(type=EventType.SAFETY_BLOCKED, aggregate_id=user_id, data=detail)
        )
