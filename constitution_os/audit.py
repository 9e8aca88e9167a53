"""
Audit bundle writer.

Deterministic hashing rules:
- payload := {generated_at, event_snapshot, decision: trimmed projection}
- audit_hash := sha256(canonical_json(payload)), plain hex
- file := <audit_dir>/<decision_id>--<audit_hash[:12]>.json holding payload + audit_hash

The hash is the link the state manager stores as last_audit_hash; the prior
link becomes prev_audit_hash on the agent's next transition. Chain
verification is left to tools/verify_audit_bundles.py.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

from .contracts.models import Decision, Event, now_utc_iso
from .hasher import compute_payload_hash, short_hash

logger = logging.getLogger(__name__)

_DECISION_FIELDS = (
    "decision_id",
    "event_id",
    "verdict",
    "applied_articles",
    "results",
    "enforcement",
    "alignment",
)


@dataclass(frozen=True)
class AuditRecord:
    audit_hash: str
    audit_file: Path
    bundle: Dict[str, Any]


def _event_snapshot(event: Union[Event, Mapping]) -> Dict[str, Any]:
    if isinstance(event, Event):
        return event.snapshot()
    return dict(event)


def _decision_projection(decision: Union[Decision, Mapping]) -> Dict[str, Any]:
    if isinstance(decision, Decision):
        return decision.audit_projection()
    return {name: decision.get(name) for name in _DECISION_FIELDS}


def build_payload(event: Union[Event, Mapping], decision: Union[Decision, Mapping]) -> Dict[str, Any]:
    return {
        "generated_at": now_utc_iso(),
        "event_snapshot": _event_snapshot(event),
        "decision": _decision_projection(decision),
    }


def compute_bundle_hash(bundle: Mapping) -> str:
    """Recompute the hash of a stored bundle (everything except audit_hash)."""
    payload = {k: v for k, v in bundle.items() if k != "audit_hash"}
    return compute_payload_hash(payload)


def bundle_filename(decision_id: str, audit_hash: str) -> str:
    return f"{decision_id}--{short_hash(audit_hash)}.json"


def write_audit_bundle(
    audit_dir: Union[str, Path],
    event: Union[Event, Mapping],
    decision: Union[Decision, Mapping],
) -> AuditRecord:
    """
    Persist one immutable bundle per decision.
    Fail-closed: an unserializable payload raises CanonicalJSONError before
    anything touches disk.
    """
    payload = build_payload(event, decision)
    audit_hash = compute_payload_hash(payload)
    bundle = {**payload, "audit_hash": audit_hash}

    target_dir = Path(audit_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    decision_id = payload["decision"]["decision_id"]
    target = target_dir / bundle_filename(str(decision_id), audit_hash)

    with target.open("w", encoding="utf-8") as f:
        json.dump(bundle, f, ensure_ascii=False, indent=2)
        f.write("\n")

    logger.info(
        "audit bundle written",
        extra={"context": {"decision_id": decision_id, "audit_hash": audit_hash, "audit_file": str(target)}},
    )
    return AuditRecord(audit_hash=audit_hash, audit_file=target, bundle=bundle)
