"""Policy schemas - thresholds consumed by the risk and decision stages."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from behavioral_engine.data.schemas.intervention import TemplateSpec


def _parse_clock(value: str) -> Tuple[int, int]:
    hours, _, minutes = value.partition(":")
    hour = int(hours)
    minute = int(minutes or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid clock time: {value}")
    return hour, minute


class PolicyThresholds(BaseModel):
    """Per-user (or system-default) thresholds."""
    session_limit_minutes: int = Field(default=60, gt=0)
    daily_limit_minutes: int = Field(default=180, gt=0)
    reopen_threshold: int = Field(default=5, gt=0)
    scroll_velocity_threshold: float = Field(default=1000.0, gt=0)
    bedtime_start: str = Field(default="22:00", description="Local HH:MM")
    bedtime_end: str = Field(default="07:00", description="Local HH:MM")
    escalation_enabled: bool = True
    escalation_delay_minutes: int = Field(default=15, ge=0)
    parent_alert_threshold: int = Field(default=75, ge=0, le=100)

    @field_validator("bedtime_start", "bedtime_end")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        _parse_clock(value)
        return value

    @property
    def bedtime_start_hour(self) -> int:
        return _parse_clock(self.bedtime_start)[0]

    @property
    def bedtime_end_hour(self) -> int:
        return _parse_clock(self.bedtime_end)[0]


class ResolvedPolicy(PolicyThresholds):
    """Thresholds plus where they came from."""
    policy_id: Optional[str] = None
    source: str = Field(default="defaults", description="user | system_default | defaults")


class PolicyUpdate(BaseModel):
    """Partial update submitted by a guardian."""
    session_limit_minutes: Optional[int] = Field(default=None, gt=0)
    daily_limit_minutes: Optional[int] = Field(default=None, gt=0)
    reopen_threshold: Optional[int] = Field(default=None, gt=0)
    scroll_velocity_threshold: Optional[float] = Field(default=None, gt=0)
    bedtime_start: Optional[str] = None
    bedtime_end: Optional[str] = None
    escalation_enabled: Optional[bool] = None
    escalation_delay_minutes: Optional[int] = Field(default=None, ge=0)
    parent_alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("bedtime_start", "bedtime_end")
    @classmethod
    def _validate_clock(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            _parse_clock(value)
        return value


class DefaultsMetadata(BaseModel):
    version: str = "1.0.0"
    description: Optional[str] = None


class PipelineDefaults(BaseModel):
    """Contents of the pipeline defaults YAML file."""
    metadata: DefaultsMetadata = Field(default_factory=DefaultsMetadata)
    system_policy: PolicyThresholds = Field(default_factory=PolicyThresholds)
    templates: List[TemplateSpec] = Field(default_factory=list)
