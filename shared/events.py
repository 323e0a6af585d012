import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class EventType(str, Enum):
    # Team membership
    MEMBER_INVITED = "membership.invited"
    MEMBER_JOINED = "membership.accepted"
    MEMBER_DECLINED = "membership.declined"
    MEMBER_REMOVED = "membership.removed"
    ROLE_CHANGED = "membership.role_changed"

    # Tournament organizers
    ORGANIZER_INVITED = "organizer.invited"
    ORGANIZER_ACCEPTED = "organizer.accepted"
    ORGANIZER_DECLINED = "organizer.declined"
    ORGANIZER_REMOVED = "organizer.removed"

    # Team registration in tournaments
    TEAM_INVITED = "tournament.team_invited"
    TEAM_REGISTERED = "tournament.team_registered"
    TEAM_WITHDRAWN = "tournament.team_withdrawn"

    # Cascades
    TEAM_TERMINATED = "team.terminated"
    TOURNAMENT_DELETED = "tournament.deleted"
    ACCOUNT_DELETED = "account.deleted"
    SAFETY_BLOCKED = "safety.blocked"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Event:
    """Envelope published on the team, tournament and user channels."""
    type: EventType
    aggregate_id: str
    timestamp: str = field(default_factory=_now)
    data: dict = field(default_factory=dict)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, EventType) else str(self.type)

    def to_dict(self) -> dict:
        return {
            "type": self.type_name,
            "aggregate_id": self.aggregate_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, payload: dict) -> "Event":
        # Unknown types are kept as plain strings
        raw_type = payload["type"]
        try:
            event_type = EventType(raw_type)
        except ValueError:
            event_type = raw_type
        return cls(
            type=event_type,
            aggregate_id=payload["aggregate_id"],
            timestamp=payload.get("timestamp") or _now(),
            data=payload.get("data") or {},
        )

    @classmethod
    def from_json(cls, raw: str) -> "Event":
        return cls.from_dict(json.loads(raw))


def membership_event(event_type: EventType, membership) -> Event:
    return Event(
        type=event_type,
        aggregate_id=membership.team_id,
        data={
            "membership_id": membership.id,
            "user_id": membership.user_id,
            "role": membership.role.value,
        }
    )


def organizer_event(event_type: EventType, relation) -> Event:
    return Event(
        type=event_type,
        aggregate_id=relation.tournament_id,
        data={
            "relation_id": relation.id,
            "user_id": relation.user_id,
        }
    )


def cascade_completed_event(event_type: EventType, target_id: str, report: dict) -> Event:
    return Event(
        type=event_type,
        aggregate_id=target_id,
        data={
            "completed_stages": report.get("completed_stages", []),
            "warnings": len(report.get("warnings", [])),
        }
    )
