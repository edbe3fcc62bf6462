"""Core data models for the shared-state phase machine."""
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

INITIAL_PHASE = "ksmp_initial_phase"
DEFAULT_PHASE_KEY = "phase"
DEFAULT_HANDLER_PREFIX = "_phase_"


class MachineConfig(BaseModel):
    """Property overrides for a StateMachinePlus instance."""
    model_config = ConfigDict(frozen=True)

    initial_phase: str = Field(default=INITIAL_PHASE, min_length=1)
    phase_key: str = Field(default=DEFAULT_PHASE_KEY, min_length=1)
    handler_prefix: str = DEFAULT_HANDLER_PREFIX


class SharedState(BaseModel):
    """Typed view of a shared-state snapshot: the current phase plus application fields."""
    model_config = ConfigDict(frozen=True)

    phase: str
    fields: Dict[str, str] = {}
    phase_key: str = DEFAULT_PHASE_KEY

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Mapping[str, str],
        phase_key: str = DEFAULT_PHASE_KEY,
        initial_phase: str = INITIAL_PHASE,
    ) -> "SharedState":
        """Build from a raw key/value snapshot. A missing or empty phase means the initial phase."""
        phase = snapshot.get(phase_key) or initial_phase
        fields = {key: value for key, value in snapshot.items() if key != phase_key}
        return cls(phase=phase, fields=fields, phase_key=phase_key)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up an application field."""
        if key == self.phase_key:
            return self.phase
        return self.fields.get(key, default)

    def to_snapshot(self) -> Dict[str, str]:
        snapshot = dict(self.fields)
        snapshot[self.phase_key] = self.phase
        return snapshot


class StateEntry(BaseModel):
    """A single key/value pair added to the shared state."""
    key: str
    value: str


class StateChange(BaseModel):
    """One batch of shared-state changes as delivered to a participant."""
    added: List[StateEntry] = []
    removed: List[str] = []
    state: Dict[str, str] = {}
    metadata: Dict[str, Dict[str, Any]] = {}

    def added_keys(self) -> List[str]:
        return [entry.key for entry in self.added]
