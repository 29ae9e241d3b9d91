from pathlib import Path

import pytest

from tunecraft.core.config import get_settings
from tunecraft.core.errors import ValidationError
from tunecraft.generation.pricing import credit_cost, load_credit_costs, reset_credit_costs_cache


def test_generation_cost_depends_on_model_version() -> None:
    assert credit_cost("generate", model_version="v3.5") == 10
    assert credit_cost("generate", model_version="V4_5") == 15
    assert credit_cost("generate", model_version="chirp-v4") == 10


def test_generation_cost_uses_default_model_version(monkeypatch) -> None:
    monkeypatch.setenv("DEFAULT_MODEL_VERSION", "v4.5")
    get_settings.cache_clear()

    assert credit_cost("generate") == 15


def test_unknown_model_version_falls_back_to_base_generate_cost() -> None:
    assert credit_cost("generate", model_version="v9") == 10


def test_non_generation_kinds_have_flat_costs() -> None:
    assert credit_cost("lyrics") == 5
    assert credit_cost("video") == 20
    assert credit_cost("wav", model_version="v4.5") == 2


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(ValidationError):
        credit_cost("remix")


def test_yaml_overrides_replace_defaults(monkeypatch, tmp_path: Path) -> None:
    costs_file = tmp_path / "costs.yaml"
    costs_file.write_text("credit_costs:\n  lyrics: 7\n  Generate_V4: 12\n  ignored: yes\n", encoding="utf-8")
    monkeypatch.setenv("CREDIT_COSTS_FILE_PATH", str(costs_file))
    get_settings.cache_clear()
    reset_credit_costs_cache()

    costs = load_credit_costs()
    assert costs["lyrics"] == 7
    assert costs["generate_v4"] == 12
    assert "ignored" not in costs
    assert costs["video"] == 20


def test_missing_costs_file_keeps_defaults(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CREDIT_COSTS_FILE_PATH", str(tmp_path / "missing.yaml"))
    get_settings.cache_clear()
    reset_credit_costs_cache()

    assert credit_cost("cover") == 15


def test_non_positive_override_is_rejected(monkeypatch, tmp_path: Path) -> None:
    costs_file = tmp_path / "costs.yaml"
    costs_file.write_text("credit_costs:\n  wav: 0\n", encoding="utf-8")
    monkeypatch.setenv("CREDIT_COSTS_FILE_PATH", str(costs_file))
    get_settings.cache_clear()
    reset_credit_costs_cache()

    with pytest.raises(ValueError):
        load_credit_costs()
