from typing import Optional


class TeamTrackError(Exception):
    """Base class for errors surfaced to callers of the core services."""


class ValidationError(TeamTrackError):
    """Malformed input, rejected before any store call."""


class NotFoundError(TeamTrackError):
    def __init__(self, entity: str, key: str, message: str = None):
        self.entity = entity
        self.key = key
        super().__init__(message or f"{entity} not found: {key}")


class SafetyViolationError(TeamTrackError):
    """
    Raised when an action would leave a team without an accepted coach
    or a tournament without an active organizer. Always raised before
    any mutation happens.
    """

    def __init__(
        self,
        message: str,
        aggregate_type: str,
        aggregate_id: str,
        aggregate_name: Optional[str] = None,
        privileged_count: int = 0
    ):
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.aggregate_name = aggregate_name
        self.privileged_count = privileged_count
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            'error': 'safety_violation',
            'message': str(self),
            'aggregate_type': self.aggregate_type,
            'aggregate_id': self.aggregate_id,
            'aggregate_name': self.aggregate_name,
            'privileged_count': self.privileged_count,
        }


class StoreUnavailableError(TeamTrackError):
    """A collaborator (document store, identity service) could not be reached."""


class CascadeStageError(TeamTrackError):
    def __init__(self, workflow: str, stage: str, target_id: str, cause: Exception = None):
        self.workflow = workflow
        self.stage = stage
        self.target_id = target_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{workflow} failed at stage '{stage}' for {target_id}{detail}")

    def to_dict(self) -> dict:
        return {
            'error': 'cascade_stage_failed',
            'message': str(self),
            'workflow': self.workflow,
            'stage': self.stage,
            'target_id': self.target_id,
        }


class PartialCascadeWarning(UserWarning):
    """Cleanup of a single dependent record failed; logged, never raised."""
