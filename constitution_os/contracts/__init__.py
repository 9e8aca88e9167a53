from .errors import ConfigError, ConstitutionError, LockTimeoutError, StateValidationError
from .models import (
    Actor,
    Alignment,
    Article,
    ArticleResult,
    Decision,
    Enforcement,
    Event,
    Hierarchy,
    now_utc_iso,
)
from .params import AlignmentThresholds, EngineParams, LimitTemplate, PrecedenceBandConfig
from .predicate import UNDEFINED, PredicateNode, parse_predicate
from .state import AgentState, TransitionResult, default_agent
from .status import Band, Outcome, PredicateKind, SignMode, Verdict

__all__ = [
    "ConfigError",
    "ConstitutionError",
    "LockTimeoutError",
    "StateValidationError",
    "Actor",
    "Alignment",
    "Article",
    "ArticleResult",
    "Decision",
    "Enforcement",
    "Event",
    "Hierarchy",
    "now_utc_iso",
    "AlignmentThresholds",
    "EngineParams",
    "LimitTemplate",
    "PrecedenceBandConfig",
    "UNDEFINED",
    "PredicateNode",
    "parse_predicate",
    "AgentState",
    "TransitionResult",
    "default_agent",
    "Band",
    "Outcome",
    "PredicateKind",
    "SignMode",
    "Verdict",
]
