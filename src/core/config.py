"""
Application settings management.

Settings are loaded from environment variables with .env file support.
The phase table and finalization policy are loaded from
config/phase_config.yaml. All configuration is validated using Pydantic.
"""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.exceptions import ConfigurationError
from src.domain.models.phase import PHASE_ORDER, Phase


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================

    config_dir: Path = Field(
        default=Path("config"),
        description="Directory containing YAML configuration files",
    )
    phase_config_path: Optional[Path] = Field(
        default=None,
        description="Phase table YAML (default: <config_dir>/phase_config.yaml)",
    )
    database_path: Path = Field(
        default=Path("data/phase_engine.db"), description="Path to SQLite database file"
    )
    logs_dir: Path = Field(default=Path("logs"), description="Directory for run logs")

    # ==========================================================================
    # Logging
    # ==========================================================================

    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    log_sessions_to_keep: int = Field(
        default=5, ge=1, le=100, description="Number of run log files to retain"
    )

    # ==========================================================================
    # Snapshot retention
    # ==========================================================================

    snapshot_max_per_session: int = Field(
        default=20, ge=1, le=1000, description="Snapshots kept per session (FIFO)"
    )
    snapshot_max_age_hours: float = Field(
        default=7 * 24, gt=0, description="Snapshots older than this are swept"
    )
    snapshot_sweep_interval_seconds: float = Field(
        default=6 * 60 * 60, gt=0, description="Interval between snapshot sweeps"
    )

    # ==========================================================================
    # Transition event history retention
    # ==========================================================================

    event_history_max_size: int = Field(
        default=1000, ge=1, description="Maximum retained transition events"
    )
    event_history_max_age_hours: float = Field(
        default=24, gt=0, description="Events older than this are swept"
    )
    event_sweep_interval_seconds: float = Field(
        default=60 * 60, gt=0, description="Interval between event history sweeps"
    )

    def resolved_phase_config_path(self) -> Path:
        return self.phase_config_path or self.config_dir / "phase_config.yaml"


# ============================================================================
# Phase Configuration (from YAML)
# ============================================================================


class PhaseConfig(BaseModel):
    """Thresholds governing a single conversation phase.

    ``requires_data`` lists dot paths into the session context that must be
    present and non-empty before the session may ENTER this phase.
    """

    min_messages: int = Field(
        default=0, ge=0, description="Turns in phase before a quality-met transition"
    )
    quality_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Natural transition threshold (0-1)"
    )
    min_data_quality: float = Field(
        default=0.0, ge=0.0, le=100.0, description="Quality floor checked by the validator"
    )
    timeout_messages: int = Field(
        default=0, ge=0, description="Force transition after this many turns in phase"
    )
    requires_data: List[str] = Field(default_factory=list)
    description: str = ""


DEFAULT_PHASES: Dict[Phase, PhaseConfig] = {
    Phase.DISCOVERY: PhaseConfig(
        min_messages=3,
        quality_threshold=0.6,
        min_data_quality=0,
        timeout_messages=12,
        requires_data=[],
        description="Understand business context and capture initial objective",
    ),
    Phase.REFINEMENT: PhaseConfig(
        min_messages=2,
        quality_threshold=0.7,
        min_data_quality=30,
        timeout_messages=10,
        requires_data=["okrData.objective"],
        description="Improve objective clarity, quality, and outcome focus",
    ),
    Phase.KR_DISCOVERY: PhaseConfig(
        min_messages=3,
        quality_threshold=0.6,
        min_data_quality=50,
        timeout_messages=8,
        requires_data=["okrData.objective"],
        description="Create 2-4 measurable key results",
    ),
    Phase.VALIDATION: PhaseConfig(
        min_messages=1,
        quality_threshold=0.7,
        min_data_quality=60,
        timeout_messages=12,
        requires_data=["okrData.objective", "okrData.keyResults"],
        description="Final quality check and user approval",
    ),
    Phase.COMPLETED: PhaseConfig(
        min_messages=0,
        quality_threshold=1.0,
        min_data_quality=40,
        timeout_messages=0,
        requires_data=["okrData.objective", "okrData.keyResults"],
        description="OKR finalized and stored - terminal state",
    ),
}


class FinalizationPolicy(BaseModel):
    """Tunable finalization-signal detection policy.

    Strong phrases always count. Weak phrases count only once the
    conversation has more than ``weak_signal_min_turns`` turns, or when at
    least ``weak_signal_min_matches`` distinct weak phrases co-occur.
    """

    strong_phrases: List[str] = Field(
        default_factory=lambda: [
            "let's finalize",
            "lets finalize",
            "finalize this",
            "ready to finalize",
            "please finalize",
            "i approve",
            "approved",
            "this is good",
            "these are final",
            "final version",
            "we're done",
            "wrap this up",
            "move to next phase",
            "proceed to next",
            "no further refinement",
        ]
    )
    weak_phrases: List[str] = Field(
        default_factory=lambda: [
            "looks good",
            "sounds good",
            "that works",
            "i like it",
            "perfect",
            "excellent",
            "that's great",
            "spot on",
            "that captures it",
        ]
    )
    window_size: int = Field(default=3, ge=1, description="Recent messages scanned")
    weak_signal_min_turns: int = Field(
        default=5, ge=0, description="Weak phrases count once turns exceed this"
    )
    weak_signal_min_matches: int = Field(
        default=2, ge=1, description="Co-occurring weak phrases that count on their own"
    )


class PhaseMachineConfig(BaseModel):
    """Complete phase engine configuration loaded from phase_config.yaml."""

    phases: Dict[Phase, PhaseConfig] = Field(
        default_factory=lambda: {p: c.model_copy() for p, c in DEFAULT_PHASES.items()}
    )
    finalization: FinalizationPolicy = Field(default_factory=FinalizationPolicy)

    @model_validator(mode="after")
    def check_phase_table(self) -> "PhaseMachineConfig":
        missing = [p.value for p in PHASE_ORDER if p not in self.phases]
        if missing:
            raise ValueError(f"Missing phase configuration for: {', '.join(missing)}")
        if self.phases[Phase.COMPLETED].timeout_messages != 0:
            raise ValueError("completed.timeout_messages must be 0 (terminal phase)")
        return self


def load_phase_config(config_path: Optional[Path] = None) -> PhaseMachineConfig:
    """
    Load the phase table from YAML.

    Phases omitted from the file keep their built-in defaults; phases that
    are present override only the keys they list.

    Args:
        config_path: Path to phase_config.yaml. If None, uses settings.

    Returns:
        PhaseMachineConfig with validated settings (defaults if file not found)

    Raises:
        ConfigurationError: If the YAML is malformed or fails validation
    """
    config_path = Path(config_path or settings.resolved_phase_config_path())

    if not config_path.exists():
        return PhaseMachineConfig()

    try:
        with open(str(config_path)) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed phase config {config_path}: {e}") from e

    if not config_data:
        return PhaseMachineConfig()

    phases: Dict[str, dict] = {
        p.value: DEFAULT_PHASES[p].model_dump() for p in PHASE_ORDER
    }
    for name, overrides in (config_data.get("phases") or {}).items():
        phases.setdefault(name, {}).update(overrides or {})

    try:
        return PhaseMachineConfig(
            phases=phases,
            finalization=config_data.get("finalization") or {},
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid phase config {config_path}: {e}") from e


# Global settings instance
settings = Settings()
