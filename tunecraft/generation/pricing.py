"""Credit cost table per job kind, optionally overridden from YAML."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from tunecraft.core.config import get_settings
from tunecraft.core.errors import ValidationError
from tunecraft.jobs.states import JOB_KINDS, KIND_GENERATE


GENERATE_MODEL_KEY_PREFIX = "generate_"

DEFAULT_CREDIT_COSTS: Dict[str, int] = {
    "generate": 10,
    "generate_v3": 10,
    "generate_v3_5": 10,
    "generate_v4": 10,
    "generate_v4_5": 15,
    "extend": 10,
    "cover": 15,
    "lyrics": 5,
    "timestamped-lyrics": 3,
    "wav": 2,
    "separate": 8,
    "boost": 12,
    "instrumental": 10,
    "vocals": 10,
    "video": 20,
}


def _resolve_costs_path() -> Path:
    settings = get_settings()
    configured = Path(settings.credit_costs_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


def _normalize_overrides(content: Any) -> Dict[str, int]:
    if not isinstance(content, dict):
        raise ValueError("Invalid credit costs file format")
    section = content.get("credit_costs", content)
    if not isinstance(section, dict):
        raise ValueError("Invalid credit costs file format")

    overrides: Dict[str, int] = {}
    for key, value in section.items():
        if not isinstance(key, str) or isinstance(value, bool) or not isinstance(value, int):
            continue
        if value <= 0:
            raise ValueError(f"Credit cost for {key} must be positive")
        overrides[key.strip().lower()] = value
    return overrides


@lru_cache(maxsize=1)
def load_credit_costs() -> Dict[str, int]:
    costs = dict(DEFAULT_CREDIT_COSTS)
    costs_path = _resolve_costs_path()
    if costs_path.exists():
        with costs_path.open("r", encoding="utf-8") as file:
            content = yaml.safe_load(file) or {}
        costs.update(_normalize_overrides(content))
    return costs


def reset_credit_costs_cache() -> None:
    load_credit_costs.cache_clear()


def _model_key(model_version: Optional[str]) -> str:
    normalized = str(model_version or "").strip().lower().replace(".", "_").replace("-", "_")
    if normalized.startswith("chirp_"):
        normalized = normalized[len("chirp_"):]
    return normalized


def credit_cost(kind: str, *, model_version: Optional[str] = None) -> int:
    if kind not in JOB_KINDS:
        raise ValidationError("Unsupported job kind", details={"kind": kind})

    costs = load_credit_costs()
    if kind == KIND_GENERATE:
        model_key = _model_key(model_version or get_settings().default_model_version)
        model_cost = costs.get(f"{GENERATE_MODEL_KEY_PREFIX}{model_key}")
        if model_cost is not None:
            return model_cost
    return costs[kind]
