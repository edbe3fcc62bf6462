import pytest
from loguru import logger

from phaseplus.handlers import HandlerSet
from phaseplus.machine import StateMachinePlus
from phaseplus.session import SharedSession

LOBBY_PLAY_SCORE = (("lobby", "play"), ("play", "score"))


class Recorder:
    """Collects handler invocations as (phase, is_first_activation, fields)."""

    def __init__(self):
        self.calls = []

    def handler(self, phase):
        def _handler(state, is_first_activation):
            self.calls.append((phase, is_first_activation, dict(state.fields)))
        return _handler

    def phases(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def caplog(caplog):
    """Route loguru output into pytest's caplog."""
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def session():
    return SharedSession()


@pytest.fixture
def make_machine(session):
    def _make(participant_id="alice", transitions=LOBBY_PLAY_SCORE, phases=None, ready=True, config=None):
        participant = session.join(participant_id)
        recorder = Recorder()
        handlers = HandlerSet()
        if phases is None:
            phases = {phase for pair in transitions for phase in pair}
        for phase in phases:
            handlers.register(phase, recorder.handler(phase))

        def setup(machine):
            for from_phase, to_phase in transitions:
                machine.add_transition(from_phase, to_phase)

        machine = StateMachinePlus(participant, setup=setup, handlers=handlers, config=config)
        machine.recorder = recorder
        if ready:
            participant.signal_ready()
        return machine

    return _make
