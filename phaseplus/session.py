"""
Shared-state session transport.

Defines the narrow interface the state machine consumes from a real-time
session layer, plus an in-memory broadcast hub that implements it for tests
and local scenario runs. Delivery is explicit and single-threaded: writes are
applied to the shared store immediately and queued per participant until
deliver() is called.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel

from phaseplus.models import StateChange, StateEntry
from phaseplus.simlog import log_event, logger, LogEntry, EventType, LogLevel

StateChangeListener = Callable[
    [List[StateEntry], List[str], Dict[str, str], Dict[str, Dict[str, Any]]], None
]
ReadyListener = Callable[[], None]


class SessionAPI(Protocol):
    """What the state machine needs from the session layer."""

    def get_state(self) -> Dict[str, str]: ...

    def submit_delta(
        self, adds: Mapping[str, str], removes: Sequence[str] = ()
    ) -> None: ...

    def add_api_ready_listener(self, callback: ReadyListener) -> None: ...

    def add_state_change_listener(self, callback: StateChangeListener) -> None: ...


class NotificationQueue(BaseModel):
    """Pending notifications for one participant."""
    queue: List[StateChange] = []

    def submit(self, change: StateChange):
        self.queue.append(change)

    def pop(self) -> StateChange:
        """Remove and return the oldest notification."""
        return self.queue.pop(0)

    def __len__(self) -> int:
        return len(self.queue)


class ParticipantSession:
    """One participant's handle on a SharedSession. Implements SessionAPI."""

    def __init__(self, hub: "SharedSession", participant_id: str):
        self.hub = hub
        self.participant_id = participant_id
        self.ready = False
        self.inbox = NotificationQueue()
        self.last_delivered: Optional[StateChange] = None
        self._ready_listeners: List[ReadyListener] = []
        self._change_listeners: List[StateChangeListener] = []

    def get_state(self) -> Dict[str, str]:
        return dict(self.hub.state)

    def submit_delta(self, adds: Mapping[str, str], removes: Sequence[str] = ()) -> None:
        self.hub.write(self.participant_id, adds, removes)

    def add_api_ready_listener(self, callback: ReadyListener) -> None:
        self._ready_listeners.append(callback)
        if self.ready:
            callback()

    def add_state_change_listener(self, callback: StateChangeListener) -> None:
        self._change_listeners.append(callback)

    def signal_ready(self) -> None:
        """Mark the API as loaded and notify ready listeners. Only the first call has effect."""
        if self.ready:
            return
        self.ready = True
        for callback in list(self._ready_listeners):
            callback()

    def dispatch(self, change: StateChange) -> None:
        self.last_delivered = change
        for callback in list(self._change_listeners):
            callback(
                list(change.added),
                list(change.removed),
                dict(change.state),
                dict(change.metadata),
            )


class SharedSession:
    """In-memory replicated key/value store that broadcasts every write to all participants."""

    def __init__(self, initial_state: Optional[Mapping[str, str]] = None):
        self.state: Dict[str, str] = dict(initial_state or {})
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.version = 0
        self.participants: Dict[str, ParticipantSession] = {}
        self._held: set = set()

    def join(self, participant_id: str) -> ParticipantSession:
        if participant_id in self.participants:
            raise ValueError(f"Participant {participant_id} already joined")
        participant = ParticipantSession(self, participant_id)
        self.participants[participant_id] = participant
        log_event(LogEntry(
            participant_id=participant_id,
            phase=None,
            event_type=EventType.PARTICIPANT_JOINED,
            payload={"participants": len(self.participants)},
            message=f"Participant {participant_id} joined session"
        ), forensic=False)
        return participant

    def get(self, participant_id: str) -> ParticipantSession:
        return self.participants[participant_id]

    def write(
        self, writer_id: str, adds: Mapping[str, str], removes: Sequence[str] = ()
    ) -> StateChange:
        """Apply a delta to the store and queue it for every participant, writer included."""
        self.version += 1
        added = [StateEntry(key=key, value=str(value)) for key, value in adds.items()]
        for entry in added:
            self.state[entry.key] = entry.value
            self.metadata[entry.key] = {
                "version": self.version,
                "last_writer": writer_id,
            }
        removed = [key for key in removes if key in self.state]
        for key in removed:
            del self.state[key]
            self.metadata.pop(key, None)

        change = StateChange(
            added=added,
            removed=removed,
            state=dict(self.state),
            metadata={key: dict(meta) for key, meta in self.metadata.items()},
        )
        for participant in self.participants.values():
            participant.inbox.submit(change)

        log_event(LogEntry(
            participant_id=writer_id,
            phase=None,
            event_type=EventType.DELTA_SUBMITTED,
            payload={"adds": dict(adds), "removes": list(removed), "version": self.version},
            message=f"{writer_id} submitted delta v{self.version}: {dict(adds)} removes={list(removed)}",
            level=LogLevel.DEBUG
        ))
        return change

    def hold(self, participant_id: str) -> None:
        """Delay deliveries to a participant until release()."""
        self._held.add(participant_id)

    def release(self, participant_id: str) -> None:
        self._held.discard(participant_id)

    def inject(self, participant_id: str, change: StateChange) -> None:
        """Queue an arbitrary notification for one participant, e.g. a stale replay."""
        self.participants[participant_id].inbox.submit(change)

    def redeliver_last(self, participant_id: str) -> bool:
        """Queue the participant's most recently delivered notification again."""
        participant = self.participants[participant_id]
        if participant.last_delivered is None:
            return False
        participant.inbox.submit(participant.last_delivered)
        return True

    def pending(self, participant_id: Optional[str] = None) -> int:
        targets = self._targets(participant_id, include_held=True)
        return sum(len(participant.inbox) for participant in targets)

    def deliver(self, participant_id: Optional[str] = None) -> int:
        """
        Deliver notifications queued so far to one participant, or to all that are not held.

        Notifications queued while delivering (e.g. by a handler that advances the
        phase) wait for the next call. Notifications are taken off the queue one at
        a time, so if a listener raises, the ones behind it stay pending.

        Returns:
            Number of notifications dispatched
        """
        delivered = 0
        for participant in self._targets(participant_id, include_held=participant_id is not None):
            for _ in range(len(participant.inbox)):
                change = participant.inbox.pop()
                log_event(LogEntry(
                    participant_id=participant.participant_id,
                    phase=None,
                    event_type=EventType.NOTIFICATION_DELIVERED,
                    payload={"keys": change.added_keys(), "removed": change.removed},
                    message=f"Delivering {change.added_keys()} to {participant.participant_id}",
                    level=LogLevel.DEBUG
                ), forensic=False)
                participant.dispatch(change)
                delivered += 1
        return delivered

    def flush(self, max_rounds: int = 100) -> int:
        """Deliver until no unheld participant has anything pending."""
        total = 0
        for _ in range(max_rounds):
            delivered = self.deliver()
            total += delivered
            if not delivered:
                return total
        logger.warning(f"Session still busy after {max_rounds} delivery rounds")
        return total

    def _targets(self, participant_id: Optional[str], include_held: bool) -> List[ParticipantSession]:
        if participant_id is not None:
            return [self.participants[participant_id]]
        return [
            participant
            for pid, participant in self.participants.items()
            if include_held or pid not in self._held
        ]
