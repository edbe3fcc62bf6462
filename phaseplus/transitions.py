"""Directed table of which phases may follow which."""
from typing import Dict, Iterable, List, Tuple

from phaseplus.models import INITIAL_PHASE
from phaseplus.simlog import log_event, LogEntry, EventType, LogLevel


class TransitionTable:
    """
    Append-only map from a source phase to the phases allowed to follow it.

    Every non-initial source phase is also registered as a target of the
    initial phase, so a participant that joins late can jump straight into it.
    """

    def __init__(self, initial_phase: str = INITIAL_PHASE):
        self.initial_phase = initial_phase
        self._transitions: Dict[str, List[str]] = {}

    @classmethod
    def from_pairs(
        cls, pairs: Iterable[Tuple[str, str]], initial_phase: str = INITIAL_PHASE
    ) -> "TransitionTable":
        table = cls(initial_phase)
        for from_phase, to_phase in pairs:
            table.add_transition(from_phase, to_phase)
        return table

    def add_transition(self, from_phase: str, to_phase: str) -> None:
        """Register that to_phase may follow from_phase."""
        self._transitions.setdefault(from_phase, []).append(to_phase)
        if from_phase != self.initial_phase:
            self._transitions.setdefault(self.initial_phase, []).append(from_phase)

        log_event(LogEntry(
            phase=from_phase,
            event_type=EventType.TRANSITION_REGISTERED,
            payload={"from": from_phase, "to": to_phase},
            message=f"Registered transition {from_phase} -> {to_phase}",
            level=LogLevel.DEBUG
        ), forensic=False)

    def is_valid(self, from_phase: str, to_phase: str) -> bool:
        """Whether to_phase is registered as following from_phase."""
        return to_phase in self._transitions.get(from_phase, ())

    def targets(self, from_phase: str) -> List[str]:
        return list(self._transitions.get(from_phase, ()))

    def phases(self) -> List[str]:
        """All phases named in the table except the initial phase, in registration order."""
        seen: Dict[str, None] = {}
        for source, targets in self._transitions.items():
            for phase in [source, *targets]:
                if phase != self.initial_phase:
                    seen.setdefault(phase, None)
        return list(seen)

    def __contains__(self, phase: str) -> bool:
        return phase in self.phases()

    def __repr__(self) -> str:
        return f"TransitionTable({self._transitions!r})"
