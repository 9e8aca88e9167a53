from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from ..contracts.models import Decision, Event, now_utc_iso
from ..contracts.params import EngineParams
from ..contracts.state import AgentState, SpendDaily, TransitionResult, default_agent, empty_registry
from ..contracts.status import Band, Verdict
from ..evaluator import get_value
from ..scorer import clamp, finite_number
from .derive import derive_band, derive_capabilities, restrictions_from_thresholds, utc_day
from .file_store import append_jsonl, ensure_file, read_json, write_json_atomic
from .lock import LOCK_RETRIES, LOCK_WAIT_MS, ExclusiveFileLock
from .schema import load_schema, validate_state

logger = logging.getLogger(__name__)

REGISTRY_FILE = "agent_registry.json"
JOURNAL_FILE = "state_log.jsonl"
LOCK_FILE = ".lock"
SCHEMA_FILE = "state_schema.json"


class StateManager:
    """
    Owner of the agent registry and the transition journal in one directory.

    Every public operation runs under the directory lock, reads included, and
    validates the registry on load and before save. Agents handed out are
    detached copies.
    """

    def __init__(
        self,
        state_dir: Union[str, Path],
        *,
        params: Union[EngineParams, Mapping, None] = None,
        schema_path: Union[str, Path, None] = None,
        lock_retries: int = LOCK_RETRIES,
        lock_wait_ms: int = LOCK_WAIT_MS,
    ) -> None:
        self.state_dir = Path(state_dir)
        self.registry_path = self.state_dir / REGISTRY_FILE
        self.journal_path = self.state_dir / JOURNAL_FILE
        self.lock_path = self.state_dir / LOCK_FILE
        self.schema_path = Path(schema_path) if schema_path is not None else self.state_dir / SCHEMA_FILE
        self.lock_retries = lock_retries
        self.lock_wait_ms = lock_wait_ms

        self.params = EngineParams.coerce(params)

    # ------------------------------------------------------------------
    # internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _lock(self) -> ExclusiveFileLock:
        return ExclusiveFileLock(self.lock_path, retries=self.lock_retries, wait_ms=self.lock_wait_ms)

    def _ensure_files(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        if not self.registry_path.exists():
            write_json_atomic(self.registry_path, empty_registry())
        ensure_file(self.journal_path)

    def _load(self) -> Tuple[Dict[str, Any], Dict[str, AgentState]]:
        self._ensure_files()
        doc = read_json(self.registry_path, empty_registry)
        agents = validate_state(doc, load_schema(self.schema_path))
        return doc, agents

    def _save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        validate_state(doc, load_schema(self.schema_path))
        doc["updated_at"] = now_utc_iso()
        write_json_atomic(self.registry_path, doc)
        return doc

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def load_state(self) -> Dict[str, Any]:
        with self._lock():
            doc, _ = self._load()
            return doc

    def save_state(self, state: Mapping) -> Dict[str, Any]:
        doc = copy.deepcopy(dict(state))
        with self._lock():
            self._ensure_files()
            return self._save(doc)

    def get_agent(self, agent_id: Optional[str]) -> Optional[AgentState]:
        if not agent_id:
            return None
        with self._lock():
            _, agents = self._load()
            found = agents.get(agent_id)
            return found.model_copy(deep=True) if found is not None else None

    def upsert_agent(self, agent_id: Optional[str], fields: Optional[Mapping] = None) -> AgentState:
        """Shallow-merge `fields` over the stored (or default) agent and persist it."""
        if not agent_id:
            raise ValueError("upsert_agent(agent_id, fields) requires agent_id")

        with self._lock():
            doc, _ = self._load()
            current = doc["agents"].get(agent_id) or default_agent(agent_id).to_document()
            merged = {
                **current,
                **copy.deepcopy(dict(fields or {})),
                "agent_id": str(agent_id),
                "updated_at": now_utc_iso(),
            }
            doc["agents"][agent_id] = merged
            self._save(doc)
            return AgentState.model_validate(copy.deepcopy(merged))

    def append_log(self, entry: Mapping) -> None:
        with self._lock():
            self._load()
            append_jsonl(self.journal_path, dict(entry))

    def apply_decision(
        self,
        event: Union[Event, Mapping, None],
        decision: Union[Decision, Mapping, None],
    ) -> TransitionResult:
        if not event or not decision:
            raise ValueError("apply_decision(event, decision) requires both event and decision")
        if not isinstance(event, Event):
            event = Event.model_validate(event)
        if not isinstance(decision, Decision):
            decision = Decision.model_validate(decision)

        agent_id = event.actor.agent_id or "agent:unknown"

        with self._lock():
            doc, agents = self._load()
            stored = doc["agents"].get(agent_id)
            current_doc = copy.deepcopy(stored) if stored is not None else default_agent(agent_id).to_document()
            current = agents.get(agent_id) or AgentState.model_validate(current_doc)

            start = finite_number(current.alignment_score)
            before = clamp(start if start is not None else 1.0, 0, 1)
            delta = finite_number(decision.alignment.delta) or 0.0
            after = clamp(before + delta, 0, 1)

            spend = self._next_spend(current.counters.spend_daily, event, current.agent_level)
            level = str(event.actor.agent_level or current.agent_level or "A0").upper()

            band = derive_band(after, self.params.alignment_score_thresholds)
            restrictions = restrictions_from_thresholds(after, self.params.alignment_score_thresholds)
            effective = level
            if level == "A3" and band != Band.NOMINAL.value:
                effective = "A2"
                restrictions.downgraded = True
                if "downgraded" not in restrictions.active:
                    restrictions.active.append("downgraded")

            capabilities = derive_capabilities(
                band,
                self.params,
                level_declared=level,
                level_effective=effective,
            )

            prev_audit_hash = current.audit.last_audit_hash or None
            last_audit_hash = decision.audit_hash or None
            consecutive_fails = current.consecutive_fails + 1 if decision.verdict == Verdict.ENFORCE.value else 0

            counters = dict(current_doc.get("counters") or {})
            counters["spend_daily"] = spend.model_dump()

            next_doc = {
                **current_doc,
                "agent_id": str(agent_id),
                "agent_level": level,
                "agent_level_effective": effective,
                "alignment_score": after,
                "band": band,
                "capabilities": capabilities,
                "consecutive_fails": consecutive_fails,
                "restrictions": restrictions.model_dump(),
                "counters": counters,
                "audit": {"prev_audit_hash": prev_audit_hash, "last_audit_hash": last_audit_hash},
                "last_event_id": event.event_id or None,
                "last_decision_id": decision.decision_id or None,
                "last_verdict": decision.verdict or None,
                "updated_at": now_utc_iso(),
            }
            doc["agents"][agent_id] = next_doc
            self._save(doc)

            spend_daily = {
                "day_utc": spend.day_utc,
                "total": spend.total,
                "count": spend.count,
                "limit": spend.limit,
            }
            append_jsonl(
                self.journal_path,
                {
                    "ts": now_utc_iso(),
                    "event_id": event.event_id or None,
                    "decision_id": decision.decision_id or None,
                    "agent_id": agent_id,
                    "verdict": decision.verdict or None,
                    "score_before": before,
                    "score_delta": delta,
                    "score_after": after,
                    "band": band,
                    "capabilities": capabilities,
                    "restrictions_active": list(restrictions.active),
                    "consecutive_fails": consecutive_fails,
                    "spend_daily": spend_daily,
                    "prev_audit_hash": prev_audit_hash,
                    "audit_hash": last_audit_hash,
                },
            )

        logger.info(
            "agent state transitioned",
            extra={
                "context": {
                    "agent_id": agent_id,
                    "decision_id": decision.decision_id,
                    "verdict": decision.verdict,
                    "score_before": before,
                    "score_after": after,
                    "band": band,
                }
            },
        )

        return TransitionResult(
            agent_id=agent_id,
            alignment={"before": before, "delta": delta, "after": after},
            band=band,
            capabilities=capabilities,
            restrictions=restrictions,
            consecutive_fails=consecutive_fails,
            spend_daily=SpendDaily(**spend_daily),
            prev_audit_hash=prev_audit_hash,
            last_audit_hash=last_audit_hash,
        )

    def _next_spend(self, current: SpendDaily, event: Event, stored_level: Optional[str]) -> SpendDaily:
        """Daily spend counters after this event: reset on a new UTC day, then add the tx amount."""
        spend = current.model_copy()
        day = utc_day(event.timestamp)
        if spend.day_utc != day:
            spend.day_utc = day
            spend.total = 0.0
            spend.count = 0

        amount = finite_number(get_value(event.context, "tx.amount"))
        if amount is not None:
            spend.total = (finite_number(spend.total) or 0.0) + amount
            spend.count = int(spend.count or 0) + 1

        level = str(event.actor.agent_level or stored_level or "A0").upper()
        template = self.params.agent_limit_templates.get(level)
        limit = finite_number(template.daily_limit) if template is not None else None
        if limit is not None:
            spend.limit = limit
        return spend
