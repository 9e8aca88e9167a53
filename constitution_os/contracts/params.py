from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PrecedenceBandConfig(BaseModel):
    min: Any = None
    risk_class: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class AlignmentThresholds(BaseModel):
    warning: Any = None
    restricted: Any = None
    quarantine: Any = None
    ban: Any = None


class LimitTemplate(BaseModel):
    daily_limit: Any = None

    model_config = ConfigDict(extra="allow")


class AlignmentScoring(BaseModel):
    outcome_factor: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class EngineParams(BaseModel):
    """
    Externally supplied governance parameters (read-only to the core).

    Numeric knobs are kept raw; every consumer treats a non-finite value as
    absent and falls back to its documented default.
    """

    precedence_bands: Dict[str, PrecedenceBandConfig] = Field(default_factory=dict)
    alignment_score_thresholds: AlignmentThresholds = Field(default_factory=AlignmentThresholds)
    capability_policy: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    agent_limit_templates: Dict[str, LimitTemplate] = Field(default_factory=dict)
    alignment_scoring: AlignmentScoring = Field(default_factory=AlignmentScoring)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _drop_null_sections(cls, data: Any) -> Any:
        # an empty YAML section (`capability_policy:`) loads as None
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @classmethod
    def coerce(cls, params: Union["EngineParams", Mapping, None]) -> "EngineParams":
        if params is None:
            return cls()
        if isinstance(params, cls):
            return params
        return cls.model_validate(dict(params))
