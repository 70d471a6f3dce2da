from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from llm.classifiers import ObservationClassifier
from llm.client.openai_client import OpenAIClient
from llm.settings import get_llm_settings, reset_llm_settings_cache


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    reset_llm_settings_cache()
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-123")
    monkeypatch.setenv("LLM_RETRY_MAX_ATTEMPTS", "0")
    yield
    reset_llm_settings_cache()


def _classifier(data: Any, payloads: List[Dict[str, Any]] | None = None) -> ObservationClassifier:
    def provider(payload: Dict[str, Any]) -> Dict[str, Any]:
        if payloads is not None:
            payloads.append(payload)
        return {
            "choices": [{"message": {"content": json.dumps(data)}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 80, "completion_tokens": 40},
            "model": "gpt-4o-mini",
        }

    return ObservationClassifier(OpenAIClient(get_llm_settings(), provider=provider))


def test_review_observations_skip_invalid_rows():
    payloads: List[Dict[str, Any]] = []
    data = {
        "observations": [
            {"type": "Pain", "topic": "sync", "tier": "Tier2", "confidence": 0.8},
            {"topic": "missing type"},
            {"type": "Praise", "confidence": 3.0},
        ]
    }

    observations = _classifier(data, payloads).classify_review(
        company_name="Acme", source="G2", gist="Sync breaks", points=["Uploads fail"], raw=None, stars=2.0
    )

    assert [(o.type, o.topic, o.tier) for o in observations] == [("Pain", "sync", "Tier2")]
    assert len(payloads) == 1
    prompt = json.dumps(payloads[0]["messages"])
    assert "Acme" in prompt and "Sync breaks" in prompt


def test_company_observations_read_camel_case_signal_type():
    data = {"observations": [{"signalType": "FeatureLaunch", "headline": "Offline mode ships", "tier": "Tier1"}]}

    (observation,) = _classifier(data).classify_company_content(
        company_name="Acme", source="Blog", gist="Offline mode", points=[], raw="We shipped offline mode."
    )

    assert observation.signal_type == "FeatureLaunch"
    assert observation.headline == "Offline mode ships"


@pytest.mark.parametrize("data", [{}, {"observations": "none"}, ["not", "an", "object"]])
def test_unexpected_shapes_yield_nothing(data):
    assert (
        _classifier(data).classify_review(company_name="Acme", source="G2", gist="", points=[], raw=None, stars=None)
        == []
    )
