"""
Task State Machine (Domain Logic).

One validator shared by the transport and delivery domains. Each domain
supplies its own transition table; the validator itself has no side effects.
Timestamps that accompany a transition are applied by the coordinator after
the transition is approved.
"""

import enum
from typing import Dict, FrozenSet, List, Type, Union

from backend.app.core.exceptions import InvalidTransitionError
from backend.app.models.task_enums import TransportTaskStatus, DeliveryTaskStatus


class TaskStateMachine:
    """
    Validates status transitions against a fixed directed graph.

    The table has no self-loops, so requesting the current status fails.
    Statuses with no successors are terminal.
    """

    def __init__(
        self,
        name: str,
        status_type: Type[enum.Enum],
        transitions: Dict[enum.Enum, FrozenSet[enum.Enum]]
    ):
        missing = set(status_type) - set(transitions)
        if missing:
            raise ValueError(f"{name} transition table misses statuses: {sorted(s.value for s in missing)}")
        self.name = name
        self.status_type = status_type
        self._transitions = transitions

    def coerce(self, status: Union[str, enum.Enum]) -> enum.Enum:
        """Convert a raw status string to this domain's enum, or raise ValueError."""
        return self.status_type(status)

    def allowed_targets(self, current: Union[str, enum.Enum]) -> List[enum.Enum]:
        return sorted(self._transitions[self.coerce(current)], key=lambda s: s.value)

    def is_terminal(self, status: Union[str, enum.Enum]) -> bool:
        return not self._transitions[self.coerce(status)]

    def can_transition(self, current: Union[str, enum.Enum], requested: Union[str, enum.Enum]) -> bool:
        try:
            target = self.coerce(requested)
        except ValueError:
            return False
        return target in self._transitions[self.coerce(current)]

    def validate(self, current: Union[str, enum.Enum], requested: Union[str, enum.Enum]) -> enum.Enum:
        """
        Approve a transition or raise.

        Args:
            current: The task's current status
            requested: The status the caller asks for (may be any string)

        Returns:
            The requested status as this domain's enum member

        Raises:
            InvalidTransitionError: If `requested` is unknown or not a
                successor of `current`
        """
        current_status = self.coerce(current)
        requested_value = requested.value if isinstance(requested, enum.Enum) else str(requested)
        if not self.can_transition(current_status, requested_value):
            raise InvalidTransitionError(
                domain=self.name,
                current=current_status.value,
                requested=requested_value,
                allowed=[s.value for s in self.allowed_targets(current_status)]
            )
        return self.coerce(requested_value)


TRANSPORT_TRANSITIONS = {
    TransportTaskStatus.PENDING: frozenset({TransportTaskStatus.TRANSPORTING, TransportTaskStatus.ABNORMAL}),
    TransportTaskStatus.TRANSPORTING: frozenset({TransportTaskStatus.ARRIVED, TransportTaskStatus.ABNORMAL}),
    TransportTaskStatus.ARRIVED: frozenset({TransportTaskStatus.COMPLETED, TransportTaskStatus.ABNORMAL}),
    TransportTaskStatus.ABNORMAL: frozenset({TransportTaskStatus.TRANSPORTING, TransportTaskStatus.COMPLETED}),
    TransportTaskStatus.COMPLETED: frozenset(),
}

DELIVERY_TRANSITIONS = {
    DeliveryTaskStatus.PENDING: frozenset({DeliveryTaskStatus.DELIVERING, DeliveryTaskStatus.ABNORMAL}),
    DeliveryTaskStatus.DELIVERING: frozenset({DeliveryTaskStatus.COMPLETED, DeliveryTaskStatus.ABNORMAL}),
    DeliveryTaskStatus.ABNORMAL: frozenset({DeliveryTaskStatus.DELIVERING, DeliveryTaskStatus.COMPLETED}),
    DeliveryTaskStatus.COMPLETED: frozenset(),
}

transport_state_machine = TaskStateMachine("transport", TransportTaskStatus, TRANSPORT_TRANSITIONS)
delivery_state_machine = TaskStateMachine("delivery", DeliveryTaskStatus, DELIVERY_TRANSITIONS)
