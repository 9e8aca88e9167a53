from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import ValidationError

from ..contracts.errors import invalid_state
from ..contracts.state import AgentState

REGISTRY_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Agent Registry",
    "type": "object",
    "required": ["version", "updated_at", "agents"],
    "properties": {
        "version": {"type": "string"},
        "updated_at": {"type": "string"},
        "agents": {"type": "object"},
    },
}

_NULLABLE_STRING = {"type": ["string", "null"]}

AGENT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Agent State",
    "type": "object",
    "required": [
        "agent_id",
        "alignment_score",
        "consecutive_fails",
        "restrictions",
        "counters",
        "audit",
        "created_at",
        "updated_at",
    ],
    "properties": {
        "agent_id": {"type": "string"},
        "alignment_score": {"type": "number"},
        "consecutive_fails": {"type": "integer", "minimum": 0},
        "restrictions": {
            "type": "object",
            "required": ["warning", "restricted", "quarantine", "ban", "active"],
            "properties": {
                "warning": {"type": "boolean"},
                "restricted": {"type": "boolean"},
                "quarantine": {"type": "boolean"},
                "ban": {"type": "boolean"},
                "downgraded": {"type": "boolean"},
                "active": {"type": "array", "items": {"type": "string"}},
            },
        },
        "counters": {
            "type": "object",
            "required": ["spend_daily"],
            "properties": {
                "spend_daily": {
                    "type": "object",
                    "required": ["day_utc", "total", "count", "limit"],
                    "properties": {
                        "day_utc": _NULLABLE_STRING,
                        "total": {"type": "number"},
                        "count": {"type": "integer", "minimum": 0},
                        "limit": {"type": ["number", "null"]},
                    },
                },
            },
        },
        "audit": {
            "type": "object",
            "required": ["prev_audit_hash", "last_audit_hash"],
            "properties": {
                "prev_audit_hash": _NULLABLE_STRING,
                "last_audit_hash": _NULLABLE_STRING,
            },
        },
        "created_at": {"type": "string"},
        "updated_at": {"type": "string"},
        # optional; when present they must carry the right type
        "agent_level": {"type": "string"},
        "agent_level_effective": {"type": "string"},
        "band": {"type": "string"},
        "capabilities": {"type": "object"},
        "last_event_id": _NULLABLE_STRING,
        "last_decision_id": _NULLABLE_STRING,
        "last_verdict": _NULLABLE_STRING,
    },
}

_REGISTRY_VALIDATOR = Draft202012Validator(REGISTRY_SCHEMA)
_AGENT_VALIDATOR = Draft202012Validator(AGENT_SCHEMA)


def _format_errors(validator: Draft202012Validator, doc: Any, prefix: str) -> List[str]:
    out: List[str] = []
    for err in validator.iter_errors(doc):
        loc = ".".join([prefix, *(str(p) for p in err.path)]) if err.path else prefix
        out.append(f"{loc}: {err.message}")
    return sorted(out)


def load_schema(schema_path: Union[str, Path, None]) -> Dict[str, Any]:
    """
    Registry schema. A readable override file replaces the built-in one;
    a missing or empty file keeps the default.
    """
    if schema_path is None:
        return REGISTRY_SCHEMA
    path = Path(schema_path)
    if not path.exists():
        return REGISTRY_SCHEMA
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return REGISTRY_SCHEMA

    try:
        schema = json.loads(raw)
        Draft202012Validator.check_schema(schema)
    except (json.JSONDecodeError, SchemaError) as e:
        raise invalid_state("STATE_SCHEMA_INVALID", f"unusable state schema {path}: {e}") from e
    if not isinstance(schema, dict):
        raise invalid_state("STATE_SCHEMA_INVALID", f"state schema must be an object: {path}")
    return schema


def validate_agent(agent_id: str, agent: Any) -> AgentState:
    """Shape-check one registry entry, then decode it. Returns the decoded agent."""
    prefix = f"agents.{agent_id}"
    errors = _format_errors(_AGENT_VALIDATOR, agent, prefix)
    if errors:
        raise invalid_state(
            "STATE_SCHEMA_VIOLATION",
            "; ".join(errors),
            {"agent_id": agent_id, "errors": errors},
        )
    try:
        return AgentState.model_validate(agent)
    except ValidationError as e:
        raise invalid_state(
            "AGENT_DECODE_FAILED",
            f"{prefix}: {e.error_count()} decode error(s)",
            {"agent_id": agent_id, "errors": [err["msg"] for err in e.errors()]},
        ) from e


def validate_state(doc: Any, schema: Optional[Dict[str, Any]] = None) -> Dict[str, AgentState]:
    """
    Fail-closed registry validation: root shape, then every agent.
    Returns the decoded agents keyed by registry id.
    """
    if not isinstance(doc, dict):
        raise invalid_state("STATE_SCHEMA_VIOLATION", "root: must be an object")

    validator = _REGISTRY_VALIDATOR if schema is None or schema is REGISTRY_SCHEMA else Draft202012Validator(schema)
    errors = _format_errors(validator, doc, "root")
    if errors:
        raise invalid_state("STATE_SCHEMA_VIOLATION", "; ".join(errors), {"errors": errors})

    agents = doc.get("agents")
    if not isinstance(agents, dict):
        raise invalid_state("STATE_SCHEMA_VIOLATION", "root.agents: must be an object")

    return {agent_id: validate_agent(agent_id, agent) for agent_id, agent in agents.items()}
