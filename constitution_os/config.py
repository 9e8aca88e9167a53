from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from .contracts.errors import ConfigError
from .contracts.models import Article
from .contracts.params import EngineParams
from .state.lock import LOCK_RETRIES, LOCK_WAIT_MS

ENV_PREFIX = "CONSTITUTION_OS_"

DEFAULT_STATE_DIR = "var/state"
DEFAULT_AUDIT_DIR = "var/audit"
DEFAULT_PARAMS_PATH = "config/parameters.yaml"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer: {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    state_dir: Path
    audit_dir: Path
    params_path: Path
    lock_retries: int = LOCK_RETRIES
    lock_wait_ms: int = LOCK_WAIT_MS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            state_dir=Path(env.get(ENV_PREFIX + "STATE_DIR", "").strip() or DEFAULT_STATE_DIR),
            audit_dir=Path(env.get(ENV_PREFIX + "AUDIT_DIR", "").strip() or DEFAULT_AUDIT_DIR),
            params_path=Path(env.get(ENV_PREFIX + "PARAMS_PATH", "").strip() or DEFAULT_PARAMS_PATH),
            lock_retries=_env_int(env, "LOCK_RETRIES", LOCK_RETRIES),
            lock_wait_ms=_env_int(env, "LOCK_WAIT_MS", LOCK_WAIT_MS),
        )


def _load_document(path: Path) -> Any:
    """YAML for .yaml/.yml, JSON otherwise."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read {path}") from exc
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(raw)
        return json.loads(raw) if raw.strip() else None
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"failed to parse {path}") from exc


def load_params(path: Union[str, Path, None]) -> EngineParams:
    """Engine parameters; a missing file means no parameters (every default applies)."""
    if path is None:
        return EngineParams()
    p = Path(path)
    if not p.exists():
        return EngineParams()

    data = _load_document(p)
    if data is None:
        return EngineParams()
    if not isinstance(data, dict):
        raise ConfigError(f"invalid parameters object: {p}")
    try:
        return EngineParams.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid parameters in {p}: {exc.error_count()} error(s)") from exc


def load_articles(path: Union[str, Path]) -> List[Article]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"articles file not found: {p}")

    data = _load_document(p)
    if isinstance(data, dict):
        data = data.get("articles")
    if not isinstance(data, list):
        raise ConfigError(f"articles must be a list or an object with an 'articles' list: {p}")

    articles: List[Article] = []
    for idx, raw in enumerate(data):
        try:
            articles.append(Article.model_validate(raw))
        except ValidationError as exc:
            raise ConfigError(f"invalid article at index {idx} in {p}") from exc
    return articles
