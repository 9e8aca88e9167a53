from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from .contracts.models import Article, ArticleResult
from .contracts.status import Outcome
from .contracts.params import EngineParams, PrecedenceBandConfig

DEFAULT_OUTCOME_FACTOR: Dict[str, float] = {
    "PASS": 0.0,
    "WARN": -0.5,
    "FAIL": -1.0,
}
DEFAULT_BAND = "operational"
UNKNOWN_BAND_SEVERITY = 0.5

BandTable = Mapping[str, Union[PrecedenceBandConfig, Mapping[str, Any]]]


@dataclass(frozen=True)
class BandEntry:
    name: str
    min: float
    risk_class: Optional[str] = None


@dataclass(frozen=True)
class AlignmentScore:
    before: float
    delta: float
    after: float

    def to_dict(self) -> Dict[str, float]:
        return {"before": self.before, "delta": self.delta, "after": self.after}


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def finite_number(value: Any) -> Optional[float]:
    """Finite float or None. Booleans are not numbers here."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
        return out if math.isfinite(out) else None
    if isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            return None
        return out if math.isfinite(out) else None
    return None


def _field(cfg: Any, key: str) -> Any:
    if isinstance(cfg, Mapping):
        return cfg.get(key)
    return getattr(cfg, key, None)


def sorted_bands(bands: Optional[BandTable]) -> List[BandEntry]:
    entries = [
        BandEntry(
            name=str(name),
            min=finite_number(_field(cfg, "min")) or 0.0,
            risk_class=_field(cfg, "risk_class"),
        )
        for name, cfg in (bands or {}).items()
    ]
    # stable: equal mins keep configuration order
    return sorted(entries, key=lambda b: b.min)


def infer_precedence_band(precedence: float, bands: Optional[BandTable]) -> str:
    ordered = sorted_bands(bands)
    if not ordered:
        return DEFAULT_BAND

    chosen = ordered[0]
    for band in ordered:
        if precedence >= band.min:
            chosen = band
    return chosen.name


def _hierarchy(article: Union[Article, Mapping, None]) -> Any:
    if isinstance(article, Article):
        return article.hierarchy
    if isinstance(article, Mapping):
        return article.get("hierarchy") or {}
    return {}


def infer_precedence(article: Union[Article, Mapping, None], bands: Optional[BandTable]) -> float:
    """
    Priority: explicit precedence, then the named band's min, then weight read
    as precedence (<=1 scaled by 100), then 0. Always within [0, 100].
    """
    hierarchy = _hierarchy(article)

    direct = finite_number(_field(hierarchy, "precedence"))
    if direct is not None:
        return clamp(direct, 0, 100)

    band_name = _field(hierarchy, "precedence_band")
    if band_name is not None and bands and band_name in bands:
        from_band = finite_number(_field(bands[band_name], "min"))
        if from_band is not None:
            return clamp(from_band, 0, 100)

    weight = finite_number(_field(hierarchy, "weight"))
    if weight is not None:
        inferred = weight * 100 if weight <= 1 else weight
        return clamp(inferred, 0, 100)

    return 0.0


def normalize_weight(article: Union[Article, Mapping, None]) -> float:
    weight = finite_number(_field(_hierarchy(article), "weight"))
    if weight is None:
        return 1.0
    return clamp(weight, 0, 1)


def severity_factor_from_band(band_name: Optional[str], params: Union[EngineParams, Mapping, None]) -> float:
    bands = EngineParams.coerce(params).precedence_bands
    cfg = bands.get(band_name) if band_name is not None else None
    band_min = finite_number(cfg.min) if cfg is not None else None
    if band_min is None:
        return UNKNOWN_BAND_SEVERITY
    return clamp(band_min / 100, 0, 1)


def outcome_factors(params: Union[EngineParams, Mapping, None]) -> Dict[str, Any]:
    custom = EngineParams.coerce(params).alignment_scoring.outcome_factor
    return {**DEFAULT_OUTCOME_FACTOR, **(custom or {})}


def _outcome_key(result: Any) -> Any:
    return result.value if isinstance(result, Outcome) else result


def score_alignment(
    results: Iterable[Union[ArticleResult, Mapping]],
    before: Any,
    params: Union[EngineParams, Mapping, None] = None,
) -> AlignmentScore:
    params = EngineParams.coerce(params)
    factors = outcome_factors(params)

    delta = 0.0
    for raw in results:
        # rows are read field by field; a malformed row contributes its fallbacks
        key = _outcome_key(_field(raw, "result"))
        outcome = finite_number(factors.get(key)) if isinstance(key, str) else None
        band = _field(raw, "severity_band")
        severity = severity_factor_from_band(band if isinstance(band, str) else None, params)
        weight = finite_number(_field(raw, "weight"))
        contribution = (outcome if outcome is not None else 0.0) * severity * (weight if weight is not None else 1.0)
        delta += contribution

    start = finite_number(before)
    normalized_before = clamp(start if start is not None else 1.0, 0, 1)
    after = clamp(normalized_before + delta, 0, 1)

    return AlignmentScore(before=normalized_before, delta=delta, after=after)
