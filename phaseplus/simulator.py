"""Scenario runner for phaseplus: several participants sharing one in-memory session."""

import argparse
import sys
from collections import Counter, defaultdict
from typing import Dict, List

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from phaseplus.config import ScenarioConfig, get_config_with_args
from phaseplus.errors import ConfigurationError
from phaseplus.handlers import HandlerSet
from phaseplus.machine import StateMachinePlus
from phaseplus.models import SharedState
from phaseplus.session import SharedSession
from phaseplus.simlog import (
    setup_logging,
    generate_session_id,
    log_event,
    logger,
    LogEntry,
    EventType,
)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Shared-state phase machine scenario runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Scenario file path (default: config.yaml)",
    )

    parser.add_argument(
        "--session-id",
        type=str,
        help="Custom session ID (default: auto-generated yymmddHHMMSS)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG, etc.)",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Quiet mode: suppress logging, show only the summary",
    )

    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite file for forensic event capture (default: none)",
    )

    parser.add_argument(
        "--participants",
        type=str,
        default=None,
        help="Comma-separated participant IDs (default: from config file)",
    )

    parser.add_argument(
        "--first-phase",
        type=str,
        default=None,
        help="Phase to begin in (default: from config file)",
    )

    return parser.parse_args(argv)


class ScenarioRun:
    """Wires one StateMachinePlus per participant onto a shared session and plays the steps."""

    def __init__(self, scenario: ScenarioConfig):
        self.scenario = scenario
        self.session = SharedSession()
        self.machines: Dict[str, StateMachinePlus] = {}
        self.invocations: Dict[str, Counter] = defaultdict(Counter)
        self.first_activations: Dict[str, List[str]] = defaultdict(list)

    def _handlers_for(self, participant_id: str) -> HandlerSet:
        handlers = HandlerSet()
        for phase in {p for pair in self.scenario.transitions for p in pair}:
            handlers.register(phase, self._make_handler(participant_id, phase))
        return handlers

    def _make_handler(self, participant_id: str, phase: str):
        def handler(state: SharedState, is_first_activation: bool):
            self.invocations[participant_id][phase] += 1
            if is_first_activation:
                self.first_activations[participant_id].append(phase)
            logger.info(
                f"[{participant_id}] entered {phase} (first={is_first_activation}) fields={state.fields}"
            )
        return handler

    def _setup(self, machine: StateMachinePlus) -> None:
        for from_phase, to_phase in self.scenario.transitions:
            machine.add_transition(from_phase, to_phase)

    def add_participant(self, participant_id: str) -> StateMachinePlus:
        participant = self.session.join(participant_id)
        machine = StateMachinePlus(
            participant,
            setup=self._setup,
            handlers=self._handlers_for(participant_id),
            config=self.scenario.machine,
        )
        self.machines[participant_id] = machine
        participant.signal_ready()
        return machine

    def run(self) -> Dict[str, Counter]:
        for participant_id in self.scenario.participants:
            self.add_participant(participant_id)

        # Nothing is delivered until every initial participant has begun; later ones find
        # the first write already in the store and fast-forward into it.
        for machine in self.machines.values():
            machine.begin(self.scenario.first_phase)
        self.session.flush()

        for step in self.scenario.steps:
            writer = step.by or self.scenario.participants[0]
            self.machines[writer].advance_phase(step.phase, step.fields, step.removes)
            if step.duplicate:
                for participant_id, machine in self.machines.items():
                    if participant_id != writer:
                        machine.advance_phase(step.phase)
            self.session.flush()

            for participant_id in step.late_join:
                self.add_participant(participant_id).begin(self.scenario.first_phase)
                self.session.flush()

        return self.invocations

    def summary_table(self) -> Table:
        phases = []
        for pair in self.scenario.transitions:
            for phase in pair:
                if phase not in phases:
                    phases.append(phase)

        table = Table(title="Handler invocations per participant")
        table.add_column("Participant")
        table.add_column("Local phase")
        for phase in phases:
            table.add_column(phase, justify="right")
        table.add_column("First activation")

        for participant_id, machine in self.machines.items():
            counts = self.invocations[participant_id]
            table.add_row(
                participant_id,
                machine.local_phase,
                *[str(counts.get(phase, 0)) for phase in phases],
                ", ".join(self.first_activations[participant_id]),
            )
        return table


def main(argv=None) -> int:
    """Main scenario runner."""
    args = parse_arguments(argv)
    try:
        scenario = get_config_with_args(args.config, args)
    except (FileNotFoundError, ValidationError) as exc:
        logger.error(f"Invalid scenario {args.config}: {exc}")
        return 1

    session_id = args.session_id if args.session_id else generate_session_id()
    effective_verbosity = -1 if args.quiet else args.verbose
    session_logger = setup_logging(session_id, effective_verbosity, args.db)

    try:
        log_event(LogEntry(
            event_type=EventType.SCENARIO_START,
            payload={
                "session_id": session_id,
                "participants": scenario.participants,
                "steps": len(scenario.steps),
                "config_file": args.config,
            },
            message="Scenario parameters configured",
        ))

        run = ScenarioRun(scenario)
        run.run()

        log_event(LogEntry(
            event_type=EventType.SCENARIO_COMPLETE,
            payload={pid: dict(counts) for pid, counts in run.invocations.items()},
            message=f"Scenario complete with {len(run.machines)} participants",
        ))
        Console().print(run.summary_table())
        return 0
    except ConfigurationError as exc:
        logger.error(f"Scenario failed: {exc}")
        return 1
    finally:
        session_logger.close()


if __name__ == "__main__":
    sys.exit(main())
