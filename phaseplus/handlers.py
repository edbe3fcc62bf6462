"""Registry of per-phase handler callables."""
from typing import Any, Callable, Dict, Iterable, List, Optional

from phaseplus.errors import UndefinedPhaseHandler
from phaseplus.models import DEFAULT_HANDLER_PREFIX, SharedState

PhaseHandler = Callable[[SharedState, bool], Any]


class HandlerSet:
    """
    Maps phase names to handlers called as ``handler(state, is_first_activation)``.

    Handlers registered explicitly win. When a ``scope`` object is given, a phase
    with no registered handler falls back to the attribute named
    ``<prefix><phase>`` on that object. A prefix left as None is filled in by the
    machine from its MachineConfig.
    """

    def __init__(self, scope: Optional[object] = None, prefix: Optional[str] = None):
        self.scope = scope
        self.prefix = prefix
        self._handlers: Dict[str, PhaseHandler] = {}

    def register(self, phase: str, handler: PhaseHandler) -> PhaseHandler:
        self._handlers[phase] = handler
        return handler

    def on(self, phase: str) -> Callable[[PhaseHandler], PhaseHandler]:
        """Decorator form of register()."""
        def decorator(handler: PhaseHandler) -> PhaseHandler:
            return self.register(phase, handler)
        return decorator

    def handler_name(self, phase: str) -> str:
        prefix = self.prefix if self.prefix is not None else DEFAULT_HANDLER_PREFIX
        return f"{prefix}{phase}"

    def find(self, phase: str) -> Optional[PhaseHandler]:
        handler = self._handlers.get(phase)
        if handler is None and self.scope is not None:
            handler = getattr(self.scope, self.handler_name(phase), None)
            if handler is not None and not callable(handler):
                handler = None
        return handler

    def resolve(self, phase: str) -> PhaseHandler:
        """Return the handler for phase or raise UndefinedPhaseHandler."""
        handler = self.find(phase)
        if handler is None:
            raise UndefinedPhaseHandler(phase, self.handler_name(phase))
        return handler

    def missing(self, phases: Iterable[str]) -> List[str]:
        return [phase for phase in phases if self.find(phase) is None]

    def __contains__(self, phase: str) -> bool:
        return self.find(phase) is not None
