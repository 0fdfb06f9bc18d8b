from __future__ import annotations

import pytest

from blueprint.llm.models import estimate_cost, get_model


def test_known_model_rates():
    assert estimate_cost("claude-3-5-sonnet-20241022", 1_000_000, 1_000_000) == pytest.approx(18.0)
    assert estimate_cost("gpt-4o-mini", 2_000_000, 500_000) == pytest.approx(0.6)


def test_unknown_model_uses_default_rates():
    assert get_model("some-new-model") is None
    assert estimate_cost("some-new-model", 1_000_000, 1_000_000) == pytest.approx(6.0)
    assert estimate_cost("some-new-model", 0, 0) == 0.0
