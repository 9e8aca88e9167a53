from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import now_utc_iso

STATE_VERSION = "1.0.0"

# optional derived fields: a fresh agent does not carry them at all
_OMIT_WHEN_NONE = (
    "agent_level",
    "agent_level_effective",
    "band",
    "capabilities",
    "last_event_id",
    "last_decision_id",
    "last_verdict",
)


class Restrictions(BaseModel):
    warning: bool = False
    restricted: bool = False
    quarantine: bool = False
    ban: bool = False
    downgraded: bool = False
    active: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class SpendDaily(BaseModel):
    day_utc: Optional[str] = None
    total: float = 0.0
    count: int = 0
    limit: Optional[float] = None

    model_config = ConfigDict(extra="allow")


class Counters(BaseModel):
    spend_daily: SpendDaily = Field(default_factory=SpendDaily)

    model_config = ConfigDict(extra="allow")


class AuditPointers(BaseModel):
    prev_audit_hash: Optional[str] = None
    last_audit_hash: Optional[str] = None


class AgentState(BaseModel):
    """
    Persisted governance state of one agent.

    Instances handed to callers are detached copies; mutating them never
    touches the registry.
    """

    agent_id: str
    alignment_score: float = 1.0
    consecutive_fails: int = 0
    restrictions: Restrictions = Field(default_factory=Restrictions)
    counters: Counters = Field(default_factory=Counters)
    audit: AuditPointers = Field(default_factory=AuditPointers)
    created_at: str = Field(default_factory=now_utc_iso)
    updated_at: str = Field(default_factory=now_utc_iso)

    agent_level: Optional[str] = None
    agent_level_effective: Optional[str] = None
    band: Optional[str] = None
    capabilities: Optional[Dict[str, Any]] = None

    last_event_id: Optional[str] = None
    last_decision_id: Optional[str] = None
    last_verdict: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json")
        for name in _OMIT_WHEN_NONE:
            if doc.get(name) is None:
                doc.pop(name, None)
        return doc


def default_agent(agent_id: str, **init_fields: Any) -> AgentState:
    return AgentState.model_validate({**init_fields, "agent_id": str(agent_id)})


class TransitionResult(BaseModel):
    agent_id: str
    alignment: Dict[str, float]
    band: str
    capabilities: Dict[str, Any]
    restrictions: Restrictions
    consecutive_fails: int
    spend_daily: SpendDaily
    prev_audit_hash: Optional[str] = None
    last_audit_hash: Optional[str] = None


def empty_registry() -> Dict[str, Any]:
    return {"version": STATE_VERSION, "updated_at": now_utc_iso(), "agents": {}}
