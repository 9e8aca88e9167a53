from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .status import AGENT_LEVELS, Outcome, PredicateKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    return utcnow().isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


class Hierarchy(BaseModel):
    # numbers stay raw: the scorer treats anything non-finite as absent
    precedence: Any = None
    precedence_band: Optional[str] = None
    weight: Any = None

    model_config = ConfigDict(extra="allow")


class Enforcement(BaseModel):
    # unset: violations FAIL; evidence still reports "log"
    mode: Optional[str] = None
    severity: str = "none"
    actions: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class Article(BaseModel):
    id: str
    title: Optional[str] = None
    predicate: Any = None
    predicate_kind: PredicateKind = PredicateKind.VIOLATION_IF_TRUE
    hierarchy: Hierarchy = Field(default_factory=Hierarchy)
    enforcement: Enforcement = Field(default_factory=Enforcement)

    model_config = ConfigDict(extra="allow")

    @field_validator("predicate_kind", mode="before")
    @classmethod
    def _default_kind(cls, v: Any) -> Any:
        return v or PredicateKind.VIOLATION_IF_TRUE


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class Actor(BaseModel):
    agent_id: str = "agent:unknown"
    agent_level: Optional[str] = None
    current_score: Optional[float] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("agent_level", mode="before")
    @classmethod
    def _upper_level(cls, v: Any) -> Any:
        if v is None:
            return None
        level = str(v).strip().upper()
        if level not in AGENT_LEVELS:
            raise ValueError(f"agent_level must be one of {AGENT_LEVELS}")
        return level


class Event(BaseModel):
    event_id: str
    event_type: str
    timestamp: Optional[datetime] = None
    actor: Actor = Field(default_factory=Actor)
    context: Dict[str, Any] = Field(default_factory=dict)
    proofs: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy of the fields the caller sent; predicate paths resolve against it."""
        return self.model_dump(mode="json", exclude_unset=True)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class ArticleResult(BaseModel):
    article_id: str
    result: Outcome
    # raw like Hierarchy; readers go through finite_number
    precedence: Any = 0.0
    weight: Any = None
    severity_band: str = "operational"
    evidence: Dict[str, Any] = Field(default_factory=dict)


class Alignment(BaseModel):
    before: Any = None
    delta: Any = None
    after: Any = None


class Decision(BaseModel):
    decision_id: str
    event_id: str
    verdict: str
    applied_articles: List[str] = Field(default_factory=list)
    results: List[ArticleResult] = Field(default_factory=list)
    enforcement: Enforcement = Field(default_factory=Enforcement)
    alignment: Alignment = Field(default_factory=Alignment)
    audit_hash: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    def audit_projection(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json",
            include={
                "decision_id",
                "event_id",
                "verdict",
                "applied_articles",
                "results",
                "enforcement",
                "alignment",
            },
        )
