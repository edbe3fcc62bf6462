"""
Configuration loading for phaseplus scenario runs.

Loads a YAML scenario file with command line argument precedence and
validates it into a ScenarioConfig.
"""

import yaml
import argparse
from typing import Dict, Any, List, Optional, Tuple
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from phaseplus.models import MachineConfig


class ScenarioStep(BaseModel):
    """One requested phase change in a scenario."""
    model_config = ConfigDict(frozen=True)

    phase: str
    by: Optional[str] = None  # Defaults to the first participant
    fields: Dict[str, str] = Field(default_factory=dict)
    removes: List[str] = Field(default_factory=list)
    duplicate: bool = False  # Every other participant writes the same phase as well
    late_join: List[str] = Field(default_factory=list)  # Participants joining after this step


class ScenarioConfig(BaseModel):
    """Validated scenario file."""
    model_config = ConfigDict(frozen=True)

    machine: MachineConfig = Field(default_factory=MachineConfig)
    transitions: List[Tuple[str, str]]
    first_phase: str = Field(min_length=1)
    participants: List[str] = Field(min_length=1)
    steps: List[ScenarioStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_participants(self) -> "ScenarioConfig":
        """Every step writer must have joined by that step; nobody joins twice."""
        joined = set()
        for participant_id in self.participants:
            if participant_id in joined:
                raise ValueError(f"Participant {participant_id} listed twice")
            joined.add(participant_id)

        for index, step in enumerate(self.steps):
            if step.by is not None and step.by not in joined:
                raise ValueError(
                    f"Step {index} ({step.phase}) is written by {step.by}, who has not joined yet"
                )
            for participant_id in step.late_join:
                if participant_id in joined:
                    raise ValueError(f"Step {index} late joiner {participant_id} has already joined")
                joined.add(participant_id)
        return self


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f)

    return config or {}


def merge_cli_args(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Override config values with command line arguments.

    CLI arguments take precedence over config file values.
    """
    if getattr(args, "participants", None):
        config["participants"] = [
            pid.strip() for pid in args.participants.split(",") if pid.strip()
        ]

    if getattr(args, "first_phase", None):
        config["first_phase"] = args.first_phase

    return config


def get_config_with_args(
    config_path: Optional[str] = None, args: Optional[argparse.Namespace] = None
) -> ScenarioConfig:
    """Load configuration, apply CLI overrides and validate it.

    Args:
        config_path: Path to config file (default: "config.yaml")
        args: CLI arguments to override config values

    Returns:
        Validated ScenarioConfig
    """
    if config_path is None:
        config_path = "config.yaml"

    config = load_config(config_path)

    if args is not None:
        config = merge_cli_args(config, args)

    return ScenarioConfig.model_validate(config)
