"""Exceptions raised by the phase state machine."""


class StateMachineError(RuntimeError):
    """Base class for state machine errors."""


class ConfigurationError(StateMachineError):
    """A programming mistake in how the machine was set up. Never retried."""


class MissingFirstPhase(ConfigurationError):
    def __init__(self):
        super().__init__("Must pass a first_phase to StateMachinePlus.begin(first_phase)")


class UndefinedPhaseHandler(ConfigurationError):
    def __init__(self, phase: str, handler_name: str):
        self.phase = phase
        self.handler_name = handler_name
        super().__init__(f"Undefined phase function: {handler_name}")
