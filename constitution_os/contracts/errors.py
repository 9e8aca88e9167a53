from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class ConstitutionError(Exception):
    """Base error for constitution core failures."""


@dataclass(frozen=True)
class StateValidationError(ConstitutionError):
    """
    Registry/agent document failed shape validation.

    code: stable machine-readable code
    detail: human readable
    meta: optional structured diagnostics (offending paths, agent id)
    """

    code: str
    detail: str
    meta: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


class LockTimeoutError(ConstitutionError):
    """State lock could not be acquired within the retry budget."""


class ConfigError(ConstitutionError):
    """Parameters or articles file could not be loaded."""


def invalid_state(code: str, detail: str, meta: Optional[Dict[str, Any]] = None) -> StateValidationError:
    return StateValidationError(code=code, detail=detail, meta=meta)
