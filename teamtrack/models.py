"""
Typed records and their store codec.

Business logic only ever sees these dataclasses. Conversion to and from
store documents happens in ``to_document`` / ``from_document``, which
also reads the legacy (version 1) camelCase layout.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .errors import ValidationError

SCHEMA_VERSION = 2

MEMBERSHIPS = 'memberships'
ORGANIZER_RELATIONS = 'organizer_relations'
TEAMS = 'teams'
TOURNAMENTS = 'tournaments'
TOURNAMENT_INVITES = 'tournament_invites'
USER_PROFILES = 'user_profiles'
CHAT_ROOMS = 'chat_rooms'
CHAT_MESSAGES = 'chat_messages'
AVAILABILITIES = 'availabilities'
TASKS = 'tasks'
EVENTS = 'events'

# Version-1 spelling of the reference fields that queries filter on
LEGACY_FIELDS = {
    'user_id': 'userId',
    'team_id': 'teamId',
    'tournament_id': 'tournamentId',
    'event_id': 'eventId',
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def encode_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def decode_datetime(value) -> Optional[datetime]:
    """Accept ISO strings with or without an offset; naive values are UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pick_changes(changes: dict, allowed) -> dict:
    """The subset of a partial update that may be written; unknown fields are rejected."""
    if not changes:
        raise ValidationError("No changes given")
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise ValidationError(f"Cannot change: {', '.join(unknown)}")
    return {key: changes[key] for key in allowed if key in changes}


def _pick(doc: dict, *keys, default=None):
    for key in keys:
        if key in doc and doc[key] is not None:
            return doc[key]
    return default


class Role(str, Enum):
    COACH = "COACH"
    PLAYER = "PLAYER"
    PARENT = "PARENT"
    ORGANIZER = "ORGANIZER"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Role is required")
        try:
            return cls(value.strip().upper())
        except ValueError:
            allowed = ', '.join(r.value for r in cls)
            raise ValidationError(f"Invalid role '{value}'. Expected one of: {allowed}")


class TeamStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SEASON_ENDED = "SEASON_ENDED"
    DISBANDED = "DISBANDED"


@dataclass
class Membership:
    user_id: str
    team_id: str
    role: Role
    id: str = field(default_factory=new_id)
    joined_at: datetime = field(default_factory=utcnow)
    active: bool = False
    invite_accepted: bool = False
    updated_at: Optional[datetime] = None

    @property
    def is_accepted_coach(self) -> bool:
        return self.role == Role.COACH and self.active and self.invite_accepted

    @property
    def is_pending(self) -> bool:
        return not self.invite_accepted

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'user_id': self.user_id,
            'team_id': self.team_id,
            'role': self.role.value,
            'joined_at': encode_datetime(self.joined_at),
            'active': self.active,
            'invite_accepted': self.invite_accepted,
            'updated_at': encode_datetime(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Membership":
        return cls(
            id=doc['id'],
            user_id=_pick(doc, 'user_id', 'userId'),
            team_id=_pick(doc, 'team_id', 'teamId'),
            role=Role.parse(doc.get('role')),
            joined_at=decode_datetime(_pick(doc, 'joined_at', 'joinedAt', 'joinDate')) or utcnow(),
            active=bool(_pick(doc, 'active', 'isActive', default=False)),
            invite_accepted=bool(_pick(doc, 'invite_accepted', 'inviteAccepted', default=False)),
            updated_at=decode_datetime(_pick(doc, 'updated_at', 'updatedAt')),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'team_id': self.team_id,
            'role': self.role.value,
            'joined_at': encode_datetime(self.joined_at),
            'active': self.active,
            'invite_accepted': self.invite_accepted,
        }


@dataclass
class OrganizerRelation:
    user_id: str
    tournament_id: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    active: bool = False
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'user_id': self.user_id,
            'tournament_id': self.tournament_id,
            'created_at': encode_datetime(self.created_at),
            'active': self.active,
            'updated_at': encode_datetime(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "OrganizerRelation":
        return cls(
            id=doc['id'],
            user_id=_pick(doc, 'user_id', 'userId'),
            tournament_id=_pick(doc, 'tournament_id', 'tournamentId'),
            created_at=decode_datetime(_pick(doc, 'created_at', 'createdAt')) or utcnow(),
            active=bool(_pick(doc, 'active', 'isActive', default=False)),
            updated_at=decode_datetime(_pick(doc, 'updated_at', 'updatedAt')),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'tournament_id': self.tournament_id,
            'created_at': encode_datetime(self.created_at),
            'active': self.active,
        }


@dataclass
class Team:
    name: str
    created_by: str
    id: str = field(default_factory=new_id)
    sport: Optional[str] = None
    age_group: Optional[str] = None
    description: Optional[str] = None
    coach_count: int = 1
    status: TeamStatus = TeamStatus.ACTIVE
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'name': self.name,
            'created_by': self.created_by,
            'sport': self.sport,
            'age_group': self.age_group,
            'description': self.description,
            'coach_count': self.coach_count,
            'status': self.status.value,
            'is_active': self.is_active,
            'created_at': encode_datetime(self.created_at),
            'updated_at': encode_datetime(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Team":
        status = _pick(doc, 'status', default=TeamStatus.ACTIVE.value)
        return cls(
            id=doc['id'],
            name=_pick(doc, 'name', 'teamName', default=''),
            created_by=_pick(doc, 'created_by', 'createdBy', 'coachId'),
            sport=doc.get('sport'),
            age_group=_pick(doc, 'age_group', 'ageGroup'),
            description=doc.get('description'),
            coach_count=int(_pick(doc, 'coach_count', 'coachCount', default=1)),
            status=TeamStatus(status),
            is_active=bool(_pick(doc, 'is_active', 'isActive', default=True)),
            created_at=decode_datetime(_pick(doc, 'created_at', 'createdAt')) or utcnow(),
            updated_at=decode_datetime(_pick(doc, 'updated_at', 'updatedAt')) or utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'created_by': self.created_by,
            'sport': self.sport,
            'age_group': self.age_group,
            'description': self.description,
            'coach_count': self.coach_count,
            'status': self.status.value,
            'is_active': self.is_active,
            'created_at': encode_datetime(self.created_at),
        }


@dataclass
class Tournament:
    name: str
    max_size: int
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    team_ids: List[str] = field(default_factory=list)
    team_count: int = 0
    organizer_count: int = 1
    max_organizers: int = 5
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_full(self) -> bool:
        return self.team_count >= self.max_size

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'name': self.name,
            'max_size': self.max_size,
            'description': self.description,
            'team_ids': list(self.team_ids),
            'team_count': self.team_count,
            'organizer_count': self.organizer_count,
            'max_organizers': self.max_organizers,
            'is_active': self.is_active,
            'created_at': encode_datetime(self.created_at),
            'updated_at': encode_datetime(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Tournament":
        return cls(
            id=doc['id'],
            name=_pick(doc, 'name', default=''),
            max_size=int(_pick(doc, 'max_size', 'maxSize', default=0)),
            description=doc.get('description'),
            team_ids=list(_pick(doc, 'team_ids', 'teamIds', default=[])),
            team_count=int(_pick(doc, 'team_count', 'teamCount', default=0)),
            organizer_count=int(_pick(doc, 'organizer_count', 'organizerCount', default=1)),
            max_organizers=int(_pick(doc, 'max_organizers', 'maxOrganizers', default=5)),
            is_active=bool(_pick(doc, 'is_active', 'isActive', default=True)),
            created_at=decode_datetime(_pick(doc, 'created_at', 'createdAt')) or utcnow(),
            updated_at=decode_datetime(_pick(doc, 'updated_at', 'updatedAt')) or utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'max_size': self.max_size,
            'description': self.description,
            'team_ids': list(self.team_ids),
            'team_count': self.team_count,
            'organizer_count': self.organizer_count,
            'max_organizers': self.max_organizers,
            'is_active': self.is_active,
            'created_at': encode_datetime(self.created_at),
        }


@dataclass
class TournamentInvite:
    """A team's invitation to (active=False) or registration in (active=True) a tournament."""
    team_id: str
    tournament_id: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    active: bool = False

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'team_id': self.team_id,
            'tournament_id': self.tournament_id,
            'created_at': encode_datetime(self.created_at),
            'active': self.active,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "TournamentInvite":
        return cls(
            id=doc['id'],
            team_id=_pick(doc, 'team_id', 'teamId'),
            tournament_id=_pick(doc, 'tournament_id', 'tournamentId'),
            created_at=decode_datetime(_pick(doc, 'created_at', 'createdAt')) or utcnow(),
            active=bool(_pick(doc, 'active', 'isActive', default=False)),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team_id': self.team_id,
            'tournament_id': self.tournament_id,
            'created_at': encode_datetime(self.created_at),
            'active': self.active,
        }


@dataclass
class UserProfile:
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    date_of_birth: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return ' '.join(p for p in (self.first_name, self.last_name) if p)

    def to_document(self) -> dict:
        return {
            'schema_version': SCHEMA_VERSION,
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'phone_number': self.phone_number,
            'date_of_birth': self.date_of_birth,
            'is_active': self.is_active,
            'created_at': encode_datetime(self.created_at),
            'updated_at': encode_datetime(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict) -> "UserProfile":
        return cls(
            id=_pick(doc, 'id', 'uid'),
            email=doc.get('email', ''),
            first_name=_pick(doc, 'first_name', 'firstName'),
            last_name=_pick(doc, 'last_name', 'lastName'),
            phone_number=_pick(doc, 'phone_number', 'phoneNumber'),
            date_of_birth=_pick(doc, 'date_of_birth', 'dateOfBirth'),
            is_active=bool(_pick(doc, 'is_active', 'isActive', default=True)),
            created_at=decode_datetime(_pick(doc, 'created_at', 'createdAt')) or utcnow(),
            updated_at=decode_datetime(_pick(doc, 'updated_at', 'updatedAt')) or utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'is_active': self.is_active,
        }


@dataclass
class MembershipWithProfile:
    membership: Membership
    profile: Optional[UserProfile] = None

    def to_dict(self) -> dict:
        data = self.membership.to_dict()
        data['user'] = self.profile.to_dict() if self.profile else None
        return data


@dataclass
class OrganizerWithProfile:
    relation: OrganizerRelation
    profile: Optional[UserProfile] = None

    def to_dict(self) -> dict:
        data = self.relation.to_dict()
        data['user'] = self.profile.to_dict() if self.profile else None
        return data


CODECS = {
    MEMBERSHIPS: Membership,
    ORGANIZER_RELATIONS: OrganizerRelation,
    TEAMS: Team,
    TOURNAMENTS: Tournament,
    TOURNAMENT_INVITES: TournamentInvite,
    USER_PROFILES: UserProfile,
}
