"""
Phase state machine layered over a shared-state session.

Every participant runs its own copy of the application, and every shared-state
write is broadcast to all of them, the writer included. StateMachinePlus
tracks the participant's local phase alongside the shared one so that each
phase handler runs once per accepted transition no matter how many times the
same phase write is delivered.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from phaseplus.errors import ConfigurationError, MissingFirstPhase, UndefinedPhaseHandler
from phaseplus.handlers import HandlerSet, PhaseHandler
from phaseplus.models import MachineConfig, SharedState, StateEntry
from phaseplus.session import SessionAPI
from phaseplus.simlog import log_event, LogEntry, EventType, LogLevel
from phaseplus.transitions import TransitionTable

SetupHook = Callable[["StateMachinePlus"], None]


def _no_setup(machine: "StateMachinePlus") -> None:
    """Default setup hook; applications pass their own."""


class StateMachinePlus:
    """Per-participant phase tracker and transition dispatcher."""

    def __init__(
        self,
        session: SessionAPI,
        setup: SetupHook = _no_setup,
        handlers: Optional[HandlerSet] = None,
        config: Optional[MachineConfig] = None,
        participant_id: Optional[str] = None,
    ):
        self.session = session
        self.config = config or MachineConfig()
        self.handlers = handlers or HandlerSet()
        if self.handlers.prefix is None:
            self.handlers.prefix = self.config.handler_prefix
        elif self.handlers.prefix != self.config.handler_prefix:
            raise ConfigurationError(
                f"HandlerSet prefix {self.handlers.prefix!r} does not match "
                f"configured handler_prefix {self.config.handler_prefix!r}"
            )
        self.transitions = TransitionTable(self.config.initial_phase)
        self.participant_id = participant_id or getattr(session, "participant_id", None)
        self.local_phase = self.config.initial_phase
        self._setup_hook = setup
        self._setup_complete = False

        self.session.add_api_ready_listener(self.on_api_ready)

    @property
    def initial_phase(self) -> str:
        return self.config.initial_phase

    @property
    def phase_key(self) -> str:
        return self.config.phase_key

    @property
    def started(self) -> bool:
        return self.local_phase != self.initial_phase

    def add_transition(self, from_phase: str, to_phase: str) -> None:
        self.transitions.add_transition(from_phase, to_phase)

    def on(self, phase: str) -> Callable[[PhaseHandler], PhaseHandler]:
        """Decorator registering a handler for phase."""
        return self.handlers.on(phase)

    def on_api_ready(self) -> None:
        """Register the state-change listener and run the setup hook, once."""
        if self._setup_complete:
            return
        self._setup_complete = True
        self.session.add_state_change_listener(self.on_state_change)
        self._setup_hook(self)

        log_event(LogEntry(
            participant_id=self.participant_id,
            phase=self.local_phase,
            event_type=EventType.SETUP_COMPLETE,
            payload={"phases": self.transitions.phases()},
            message=f"Setup complete with {len(self.transitions.phases())} phases"
        ), forensic=False)

    def verify_handlers(self) -> None:
        """Raise UndefinedPhaseHandler for the first registered phase without a handler."""
        missing = self.handlers.missing(self.transitions.phases())
        if missing:
            phase = missing[0]
            log_event(LogEntry(
                participant_id=self.participant_id,
                phase=phase,
                event_type=EventType.HANDLER_MISSING,
                payload={"missing": missing},
                message=f"No handler for phases: {', '.join(missing)}",
                level=LogLevel.ERROR
            ))
            raise UndefinedPhaseHandler(phase, self.handlers.handler_name(phase))

    def begin(self, first_phase: Optional[str] = None) -> None:
        """
        Start tracking state.

        On a fresh session this requests first_phase for every participant. A
        participant joining a session already in progress is fast-forwarded to
        the shared phase instead, and nothing is written.

        Args:
            first_phase: The phase in which to begin

        Raises:
            MissingFirstPhase: first_phase was not given
            UndefinedPhaseHandler: a registered phase has no handler
        """
        if not first_phase:
            raise MissingFirstPhase()
        self.verify_handlers()

        snapshot = self.session.get_state()
        shared_phase = snapshot.get(self.phase_key)
        in_progress = bool(shared_phase) and shared_phase != self.initial_phase

        log_event(LogEntry(
            participant_id=self.participant_id,
            phase=self.local_phase,
            event_type=EventType.MACHINE_BEGIN,
            payload={"first_phase": first_phase, "shared_phase": shared_phase, "in_progress": in_progress},
            message=f"Beginning at {shared_phase if in_progress else first_phase}"
        ), forensic=False)

        if in_progress:
            log_event(LogEntry(
                participant_id=self.participant_id,
                phase=shared_phase,
                event_type=EventType.FAST_FORWARD,
                payload={"shared_phase": shared_phase},
                message=f"{self.participant_id} fast-forwarding to {shared_phase}"
            ))
            self._next_local_phase(self._shared_state(snapshot), True)
        else:
            self.advance_phase(first_phase)

    def advance_phase(
        self,
        phase: str,
        adds: Optional[Mapping[str, str]] = None,
        removes: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Request the next phase for all participants.

        The local phase only moves once this participant's own listener sees
        the write, exactly like every other participant.

        Args:
            phase: The next phase
            adds: Extra values to add to the shared state
            removes: Keys to remove from the shared state
        """
        delta: Dict[str, str] = dict(adds or {})
        delta[self.phase_key] = phase

        log_event(LogEntry(
            participant_id=self.participant_id,
            phase=self.local_phase,
            event_type=EventType.PHASE_REQUESTED,
            payload={"requested": phase, "adds": delta, "removes": list(removes or [])},
            message=f"{self.participant_id} requested phase {phase}"
        ), forensic=False)
        self.session.submit_delta(delta, list(removes or []))

    def on_state_change(
        self,
        added: Sequence[Union[StateEntry, Mapping[str, str], str]],
        removed: Sequence[str],
        state: Dict[str, str],
        metadata: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        """
        Session listener. Only changes to the phase key matter here.

        Several participants may race to write the same phase, so one logical
        transition can arrive many times. Only a transition out of the current
        local phase is accepted; anything else is a duplicate or stale delivery
        and is ignored.
        """
        if not any(self._entry_key(entry) == self.phase_key for entry in added):
            log_event(LogEntry(
                participant_id=self.participant_id,
                phase=self.local_phase,
                event_type=EventType.NOTIFICATION_IGNORED,
                message=f"Ignoring change without {self.phase_key!r}",
                level=LogLevel.DEBUG
            ), forensic=False)
            return

        shared = self._shared_state(state)
        if not self.transitions.is_valid(self.local_phase, shared.phase):
            log_event(LogEntry(
                participant_id=self.participant_id,
                phase=self.local_phase,
                event_type=EventType.TRANSITION_REJECTED,
                payload={"from": self.local_phase, "to": shared.phase},
                message=f"Dropped transition {self.local_phase} -> {shared.phase}",
                level=LogLevel.DEBUG
            ), forensic=False)
            return

        is_first_activation = self.local_phase == self.initial_phase
        log_event(LogEntry(
            participant_id=self.participant_id,
            phase=shared.phase,
            event_type=EventType.TRANSITION_ACCEPTED,
            payload={"from": self.local_phase, "to": shared.phase, "first_activation": is_first_activation},
            message=f"{self.participant_id}: {self.local_phase} -> {shared.phase}"
        ))
        self._next_local_phase(shared, is_first_activation)

    def _next_local_phase(self, state: SharedState, is_first_activation: bool) -> None:
        self.local_phase = state.phase
        handler = self.handlers.resolve(state.phase)
        log_event(LogEntry(
            participant_id=self.participant_id,
            phase=state.phase,
            event_type=EventType.HANDLER_INVOKED,
            payload={"handler": self.handlers.handler_name(state.phase), "first_activation": is_first_activation},
            message=f"Running {self.handlers.handler_name(state.phase)}",
            level=LogLevel.DEBUG
        ), forensic=False)
        handler(state, is_first_activation)

    def _shared_state(self, snapshot: Mapping[str, str]) -> SharedState:
        return SharedState.from_snapshot(snapshot, self.phase_key, self.initial_phase)

    @staticmethod
    def _entry_key(entry: Any) -> str:
        if isinstance(entry, StateEntry):
            return entry.key
        if isinstance(entry, Mapping):
            return entry.get("key")
        return entry
