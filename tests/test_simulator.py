import sqlite3
from pathlib import Path

from phaseplus.config import get_config_with_args
from phaseplus.handlers import HandlerSet
from phaseplus.simulator import ScenarioRun, main

CONFIG = str(Path(__file__).resolve().parents[1] / "config.yaml")


def test_bundled_scenario_runs_each_handler_once_per_transition():
    run = ScenarioRun(get_config_with_args(CONFIG))

    invocations = run.run()

    for participant_id in ("alice", "bob"):
        assert invocations[participant_id] == {"lobby": 1, "play": 2, "score": 1}
        assert run.first_activations[participant_id] == ["lobby"]
    assert invocations["carol"] == {"score": 1, "play": 1}
    assert run.first_activations["carol"] == ["score"]
    assert {machine.local_phase for machine in run.machines.values()} == {"play"}
    assert "winner" not in run.session.state
    assert run.session.state["round"] == "2"


def test_summary_table_has_a_row_per_participant():
    run = ScenarioRun(get_config_with_args(CONFIG))
    run.run()

    table = run.summary_table()

    assert table.row_count == 3
    assert [column.header for column in table.columns][2:5] == ["lobby", "play", "score"]


def test_main_returns_zero(tmp_path, capsys):
    db_path = tmp_path / "events.sqlite3"

    assert main(["--config", CONFIG, "-q", "--session-id", "test", "--db", str(db_path)]) == 0

    assert "Handler invocations" in capsys.readouterr().out
    with sqlite3.connect(str(db_path)) as connection:
        event_types = {row[0] for row in connection.execute("SELECT event_type FROM events")}
    assert "transition_accepted" in event_types
    assert "fast_forward" in event_types


def test_main_reports_configuration_error(monkeypatch):
    monkeypatch.setattr(ScenarioRun, "_handlers_for", lambda self, participant_id: HandlerSet())

    assert main(["--config", CONFIG, "-q"]) == 1


def test_main_rejects_step_by_unknown_participant(tmp_path):
    path = tmp_path / "typo.yaml"
    path.write_text(
        "transitions: [[lobby, play]]\n"
        "first_phase: lobby\n"
        "participants: [alice]\n"
        "steps:\n"
        "  - phase: play\n"
        "    by: dave\n"
    )

    assert main(["--config", str(path), "-q"]) == 1


def test_main_rejects_missing_config(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml"), "-q"]) == 1
