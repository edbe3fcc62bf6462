"""Phase state machine for multi-participant shared-state sessions."""

from phaseplus.errors import (
    ConfigurationError,
    MissingFirstPhase,
    StateMachineError,
    UndefinedPhaseHandler,
)
from phaseplus.handlers import HandlerSet
from phaseplus.machine import StateMachinePlus
from phaseplus.models import INITIAL_PHASE, MachineConfig, SharedState, StateChange, StateEntry
from phaseplus.session import ParticipantSession, SessionAPI, SharedSession
from phaseplus.transitions import TransitionTable

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "HandlerSet",
    "INITIAL_PHASE",
    "MachineConfig",
    "MissingFirstPhase",
    "ParticipantSession",
    "SessionAPI",
    "SharedSession",
    "SharedState",
    "StateChange",
    "StateEntry",
    "StateMachineError",
    "StateMachinePlus",
    "TransitionTable",
    "UndefinedPhaseHandler",
]
