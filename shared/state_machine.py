from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass


class RelationState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REMOVED = "removed"


TERMINAL_STATES = (RelationState.DECLINED, RelationState.REMOVED)


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot move a relation from {from_state} to {to_state}"
        super().__init__(self.reason)


def capacity_guard(count_key: str, limit_key: str):
    """Guard that fails once `count_key` has reached `limit_key` in the context."""
    def guard(context: dict) -> bool:
        limit = context.get(limit_key)
        if limit is None:
            return True
        return context.get(count_key, 0) < limit
    return guard


@dataclass
class Transition:
    from_state: RelationState
    to_state: RelationState
    action: str
    guard: Optional[Callable[[dict], bool]] = None


class RelationStateMachine:
    """
    Lifecycle shared by team memberships and tournament organizer relations:
    an invite is created pending, then either declined (terminal) or
    accepted, and an accepted relation can only end by removal.

    Subclasses list their TRANSITIONS; the allowed actions per state are
    derived from that table in declaration order.
    """

    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state: RelationState = RelationState.PENDING):
        self._state = initial_state
        self._history: List[Tuple[RelationState, str, RelationState]] = []
        self._table: Dict[Tuple[RelationState, str], Transition] = {
            (t.from_state, t.action): t for t in self.TRANSITIONS
        }

    @property
    def state(self) -> RelationState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def allowed_actions(self) -> List[str]:
        return [t.action for t in self.TRANSITIONS if t.from_state == self._state]

    def can_transition(self, action: str) -> bool:
        return (self._state, action) in self._table

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None) -> RelationState:
        """
        Apply `action`. A guard is only evaluated when a context is given,
        so callers that have nothing to check against skip it.
        """
        t = self._table.get((self._state, action))
        if t is None:
            raise TransitionError(
                self._state.value,
                "unknown",
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )

        if t.guard and guard_context and not t.guard(guard_context):
            raise TransitionError(
                self._state.value,
                t.to_state.value,
                f"Guard condition failed for action '{action}'"
            )

        self._history.append((self._state, action, t.to_state))
        self._state = t.to_state
        return self._state

    def get_history(self) -> List[Tuple[RelationState, str, RelationState]]:
        return list(self._history)


class MembershipStateMachine(RelationStateMachine):
    # change_role is a self-loop; a never-accepted invite may also be withdrawn
    TRANSITIONS = [
        Transition(RelationState.PENDING, RelationState.ACCEPTED, "accept"),
        Transition(RelationState.PENDING, RelationState.DECLINED, "decline"),
        Transition(RelationState.PENDING, RelationState.REMOVED, "remove"),
        Transition(RelationState.ACCEPTED, RelationState.ACCEPTED, "change_role"),
        Transition(RelationState.ACCEPTED, RelationState.REMOVED, "remove"),
    ]

    @classmethod
    def for_membership(cls, membership) -> "MembershipStateMachine":
        state = RelationState.ACCEPTED if membership.invite_accepted else RelationState.PENDING
        return cls(initial_state=state)


class OrganizerStateMachine(RelationStateMachine):
    TRANSITIONS = [
        Transition(RelationState.PENDING, RelationState.ACCEPTED, "accept",
                   guard=capacity_guard("organizer_count", "max_organizers")),
        Transition(RelationState.PENDING, RelationState.DECLINED, "decline"),
        Transition(RelationState.ACCEPTED, RelationState.REMOVED, "remove"),
    ]

    @classmethod
    def for_relation(cls, relation) -> "OrganizerStateMachine":
        state = RelationState.ACCEPTED if relation.active else RelationState.PENDING
        return cls(initial_state=state)
