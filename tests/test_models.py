import pytest
from pydantic import ValidationError

from phaseplus.models import INITIAL_PHASE, MachineConfig, SharedState, StateChange, StateEntry


def test_shared_state_splits_phase_from_fields():
    state = SharedState.from_snapshot({"phase": "play", "round": "2"})

    assert state.phase == "play"
    assert state.fields == {"round": "2"}
    assert state.get("round") == "2"
    assert state.get("phase") == "play"
    assert state.get("missing", "x") == "x"


@pytest.mark.parametrize("snapshot", [{}, {"phase": ""}, {"phase": None}])
def test_missing_or_empty_phase_normalises_to_initial(snapshot):
    assert SharedState.from_snapshot(snapshot).phase == INITIAL_PHASE


def test_custom_phase_key_and_initial():
    state = SharedState.from_snapshot({"stage": "", "phase": "x"}, phase_key="stage", initial_phase="idle")

    assert state.phase == "idle"
    assert state.fields == {"phase": "x"}
    assert state.to_snapshot() == {"stage": "idle", "phase": "x"}


def test_machine_config_defaults_and_frozen():
    config = MachineConfig()

    assert config.initial_phase == INITIAL_PHASE
    assert config.phase_key == "phase"
    assert config.handler_prefix == "_phase_"
    with pytest.raises(ValidationError):
        config.phase_key = "stage"


def test_machine_config_rejects_empty_phase_key():
    with pytest.raises(ValidationError):
        MachineConfig(phase_key="")


def test_state_change_added_keys():
    change = StateChange(added=[StateEntry(key="phase", value="play"), StateEntry(key="round", value="1")])

    assert change.added_keys() == ["phase", "round"]
    assert change.removed == []
