from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .audit import AuditRecord, write_audit_bundle
from .contracts.models import Alignment, Article, ArticleResult, Decision, Enforcement, Event
from .contracts.params import EngineParams
from .contracts.state import AgentState, TransitionResult
from .contracts.status import Outcome, Verdict
from .evaluator import evaluate_article
from .scorer import finite_number, infer_precedence, infer_precedence_band, normalize_weight, score_alignment
from .state.manager import StateManager

logger = logging.getLogger(__name__)

RFC_SUBMITTED = "rfc.submitted"
GATING_ARTICLE_ID = "CAPABILITY_GATING/RFC_PROPOSE"


@dataclass(frozen=True)
class EnforcementOutcome:
    decision: Decision
    transition: Optional[TransitionResult]
    audit: Optional[AuditRecord]
    agent: Optional[AgentState] = None

    @property
    def gated(self) -> bool:
        return self.transition is None


def new_decision_id() -> str:
    return str(uuid.uuid4())


def _should_gate(event: Event, agent: Optional[AgentState]) -> bool:
    level = str(event.actor.agent_level or "A0").upper()
    if event.event_type != RFC_SUBMITTED or level not in ("A2", "A3"):
        return False
    capabilities = (agent.capabilities if agent is not None else None) or {}
    return capabilities.get("can_propose_rfc") is False


def _gating_decision(event: Event, agent: Optional[AgentState]) -> Decision:
    score = finite_number(agent.alignment_score) if agent is not None else None
    score = 1.0 if score is None else score
    return Decision(
        decision_id=new_decision_id(),
        event_id=event.event_id,
        verdict=Verdict.ENFORCE.value,
        applied_articles=[GATING_ARTICLE_ID],
        results=[
            ArticleResult(
                article_id=GATING_ARTICLE_ID,
                result=Outcome.FAIL,
                precedence=100,
                weight=1,
                severity_band="core_hlp",
                evidence={"reason": "capabilities.can_propose_rfc=false", "event_type": event.event_type},
            )
        ],
        enforcement=Enforcement(mode="quarantine", severity="high", actions=["block_rfc_submission"]),
        alignment=Alignment(before=score, delta=0.0, after=score),
    )


def evaluate_articles(
    event: Event,
    articles: Iterable[Union[Article, Mapping]],
    params: Optional[EngineParams],
) -> List[ArticleResult]:
    bands = params.precedence_bands if params is not None else {}
    results: List[ArticleResult] = []
    for raw in articles:
        article = raw if isinstance(raw, Article) else Article.model_validate(raw)
        evaluation = evaluate_article(article, event)
        precedence = infer_precedence(article, bands)
        configured_band = article.hierarchy.precedence_band
        results.append(
            ArticleResult(
                article_id=article.id,
                result=evaluation.result,
                precedence=precedence,
                weight=normalize_weight(article),
                severity_band=configured_band or infer_precedence_band(precedence, bands),
                evidence=evaluation.evidence,
            )
        )
    return results


def overall_verdict(results: Sequence[ArticleResult]) -> str:
    outcomes = {r.result for r in results}
    if Outcome.FAIL in outcomes:
        return Verdict.ENFORCE.value
    if Outcome.WARN in outcomes:
        return Verdict.WARN.value
    return Verdict.PASS.value


def select_enforcement(articles: Sequence[Article], results: Sequence[ArticleResult]) -> Enforcement:
    """Mode and severity of the highest-precedence violated article; actions from all of them, in order."""
    by_id = {a.id: a for a in articles}
    violated = [r for r in results if r.result != Outcome.PASS and r.article_id in by_id]
    if not violated:
        return Enforcement(mode="log", severity="none", actions=[])

    top = max(violated, key=lambda r: finite_number(r.precedence) or 0.0)
    actions: List[str] = []
    for r in violated:
        for action in by_id[r.article_id].enforcement.actions:
            if action not in actions:
                actions.append(action)

    chosen = by_id[top.article_id].enforcement
    return Enforcement(mode=chosen.mode or "log", severity=chosen.severity or "none", actions=actions)


def enforce(
    event: Union[Event, Mapping],
    articles: Iterable[Union[Article, Mapping]],
    *,
    manager: StateManager,
    audit_dir: Union[str, Path],
    params: Union[EngineParams, Mapping, None] = None,
) -> EnforcementOutcome:
    """
    Evaluate -> score -> audit -> transition for one event.

    A2/A3 actors whose stored capabilities forbid RFC proposals get a fixed
    ENFORCE decision for rfc.submitted events; nothing is audited or persisted
    for that short-circuit.
    """
    if not isinstance(event, Event):
        event = Event.model_validate(event)
    params = EngineParams.coerce(params) if params is not None else manager.params
    parsed = [a if isinstance(a, Article) else Article.model_validate(a) for a in articles]

    agent = manager.get_agent(event.actor.agent_id)
    if _should_gate(event, agent):
        decision = _gating_decision(event, agent)
        logger.info(
            "rfc submission blocked by capability gating",
            extra={"context": {"agent_id": event.actor.agent_id, "event_id": event.event_id}},
        )
        return EnforcementOutcome(decision=decision, transition=None, audit=None, agent=agent)

    results = evaluate_articles(event, parsed, params)

    before = finite_number(agent.alignment_score) if agent is not None else None
    if before is None:
        before = finite_number(event.actor.current_score)
    alignment = score_alignment(results, before if before is not None else 1.0, params)

    decision = Decision(
        decision_id=new_decision_id(),
        event_id=event.event_id,
        verdict=overall_verdict(results),
        applied_articles=[a.id for a in parsed],
        results=results,
        enforcement=select_enforcement(parsed, results),
        alignment=Alignment(**alignment.to_dict()),
    )

    audit = write_audit_bundle(audit_dir, event, decision)
    decision = decision.model_copy(update={"audit_hash": audit.audit_hash})
    transition = manager.apply_decision(event, decision)

    logger.info(
        "event enforced",
        extra={
            "context": {
                "event_id": event.event_id,
                "decision_id": decision.decision_id,
                "verdict": decision.verdict,
                "band": transition.band,
            }
        },
    )
    return EnforcementOutcome(
        decision=decision,
        transition=transition,
        audit=audit,
        agent=manager.get_agent(transition.agent_id),
    )
