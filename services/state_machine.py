from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from models.enums import AMCStatus, BookingStatus
from .errors import InvalidTransition

logger = logging.getLogger(__name__)


class StateMachine:
    """Explicit action -> {from_status: to_status} table for one entity type.

    `apply()` is the only place an entity's status is allowed to change.
    """

    def __init__(self, entity: str, transitions: Mapping[str, Mapping[Any, Any]], terminal: Iterable[Any] = ()):
        self.entity = entity
        self.transitions: Dict[str, Dict[Any, Any]] = {a: dict(t) for a, t in transitions.items()}
        self.terminal = frozenset(terminal)

    def can(self, action: str, current: Any) -> bool:
        return current in self.transitions.get(action, {})

    def target(self, action: str, current: Any, message: Optional[str] = None) -> Any:
        if action not in self.transitions:
            raise KeyError(f"Unknown {self.entity} action: {action}")
        table = self.transitions[action]
        if current not in table:
            base = message or f"Cannot {action.replace('_', ' ')} {self.entity}"
            raise InvalidTransition(f"{base}. Current status: {_value(current)}", current=current, action=action)
        return table[current]

    def apply(self, entity: Any, action: str, message: Optional[str] = None) -> Any:
        current = entity.status
        new_status = self.target(action, current, message)
        if new_status != current:
            logger.debug("%s %s: %s -> %s", self.entity, action, _value(current), _value(new_status))
        entity.status = new_status
        return new_status

    def action_for(self, current: Any, wanted: Any, allowed: Optional[Iterable[str]] = None) -> Optional[str]:
        """First action in `allowed` (default: all) that moves `current` to `wanted`."""
        for action in (allowed if allowed is not None else self.transitions):
            table = self.transitions.get(action, {})
            if table.get(current) == wanted and current != wanted:
                return action
        return None


def _value(status: Any) -> Any:
    return getattr(status, "value", status)


A = AMCStatus

AMC_SUBSCRIPTION = StateMachine(
    "subscription",
    {
        "verify_payment": {A.inactive: A.active},
        "update": {A.active: A.active},
        "renew": {A.active: A.active},
        "use_service": {A.active: A.active},
        "cancel": {A.active: A.cancelled},
        "expire": {A.active: A.expired},
    },
    terminal=(A.cancelled, A.expired),
)

B = BookingStatus
_ASSIGNABLE = (B.pending, B.waiting_for_engineer, B.confirmed, B.declined)
_OPEN = (B.pending, B.waiting_for_engineer, B.confirmed)

BOOKING = StateMachine(
    "booking",
    {
        "assign": {s: B.waiting_for_engineer for s in _ASSIGNABLE},
        "assign_confirmed": {s: B.confirmed for s in _ASSIGNABLE},
        "confirm": {B.waiting_for_engineer: B.confirmed},
        "accept": {B.waiting_for_engineer: B.in_progress, B.confirmed: B.in_progress},
        "decline": {B.waiting_for_engineer: B.waiting_for_engineer, B.confirmed: B.waiting_for_engineer},
        "start": {B.confirmed: B.in_progress},
        "complete_cash": {B.in_progress: B.completed},
        "complete_online": {B.in_progress: B.in_progress},
        "verify_payment": {B.in_progress: B.completed},
        "cancel": {s: B.cancelled for s in _OPEN + (B.in_progress,)},
        "reschedule": {s: s for s in _OPEN + (B.in_progress,)},
        "reject": {B.pending: B.declined, B.waiting_for_engineer: B.declined},
        "refund": {s: B.cancelled for s in _OPEN + (B.in_progress, B.completed)},
    },
    terminal=(B.completed, B.cancelled),
)
