from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from constitution_os.contracts.params import EngineParams
from constitution_os.state.manager import StateManager

THRESHOLDS = {"warning": 0.7, "restricted": 0.5, "quarantine": 0.3, "ban": 0.1}


@pytest.fixture
def params() -> EngineParams:
    return EngineParams.model_validate(
        {
            "precedence_bands": {
                "operational": {"min": 0, "risk_class": "low"},
                "procedural": {"min": 40, "risk_class": "medium"},
                "constitutional": {"min": 70, "risk_class": "high"},
                "core_hlp": {"min": 100, "risk_class": "critical"},
            },
            "alignment_score_thresholds": dict(THRESHOLDS),
            "capability_policy": {
                "nominal": {
                    "can_vote_typeII_III_A2A3": True,
                    "can_propose_rfc_A2A3": True,
                    "sign_mode_A2A3": "any",
                    "spend_multiplier": 1,
                    "rmz_proposal_bond_multiplier": 1,
                },
                "warning": {"sign_mode_A2A3": "allowlist_only", "rmz_proposal_bond_multiplier": 1.5},
                "quarantine": {
                    "can_vote_typeII_III_A2A3": False,
                    "can_propose_rfc_A2A3": False,
                    "spend_multiplier": 0,
                },
            },
            "agent_limit_templates": {"A1": {"daily_limit": 100}, "A2": {"daily_limit": 1000}},
        }
    )


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def audit_dir(tmp_path: Path) -> Path:
    return tmp_path / "audit"


@pytest.fixture
def manager(state_dir: Path, params: EngineParams) -> StateManager:
    return StateManager(state_dir, params=params, lock_wait_ms=5)


@pytest.fixture
def make_event() -> Callable[..., Dict[str, Any]]:
    counter = {"n": 0}

    def _make(
        agent_id: str = "agent:alpha",
        *,
        level: Optional[str] = "A1",
        event_type: str = "action.performed",
        timestamp: Optional[str] = "2026-03-01T12:00:00Z",
        context: Optional[Dict[str, Any]] = None,
        current_score: Optional[float] = None,
    ) -> Dict[str, Any]:
        counter["n"] += 1
        actor: Dict[str, Any] = {"agent_id": agent_id}
        if level is not None:
            actor["agent_level"] = level
        if current_score is not None:
            actor["current_score"] = current_score
        event: Dict[str, Any] = {
            "event_id": f"evt-{counter['n']:04d}",
            "event_type": event_type,
            "actor": actor,
            "context": context or {},
            "proofs": {},
        }
        if timestamp is not None:
            event["timestamp"] = timestamp
        return event

    return _make


@pytest.fixture
def make_decision() -> Callable[..., Dict[str, Any]]:
    counter = {"n": 0}

    def _make(
        *,
        delta: Any = 0.0,
        verdict: str = "PASS",
        audit_hash: Optional[str] = None,
        event_id: str = "evt-0000",
        results: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        counter["n"] += 1
        return {
            "decision_id": f"dec-{counter['n']:04d}",
            "event_id": event_id,
            "verdict": verdict,
            "applied_articles": [r["article_id"] for r in results or []],
            "results": results or [],
            "enforcement": {"mode": "log", "severity": "none", "actions": []},
            "alignment": {"before": None, "delta": delta, "after": None},
            "audit_hash": audit_hash,
        }

    return _make
