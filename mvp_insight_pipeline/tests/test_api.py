import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app import main as main_mod
from app.chart_data import get_fallback_chart_data
from app.gemini_client import GeminiClient
from app.llm_client import LLMEngine, LLMError, LLMResponse, LLMUsage
from app.market_analysis import MarketAnalysisGenerator


class FakeAdapter:
    def __init__(self, content="<h1>Mission</h1>", available=True, error=None):
        self.content = content
        self.available = available
        self.error = error
        self.calls = []

    def is_available(self):
        return self.available

    def generate_completion(self, prompt, options=None):
        self.calls.append((prompt, options))
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content, model="gpt-4o", usage=LLMUsage(10, 20, 30))


class FakeModels:
    def __init__(self, responses):
        self.responses = list(responses)

    def generate_content(self, model, contents, config):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _text(text):
    return SimpleNamespace(text=text, candidates=[])


@pytest.fixture
def client():
    yield TestClient(main_mod.app)
    main_mod.app.dependency_overrides.clear()


def _use_adapter(adapter):
    main_mod.app.dependency_overrides[main_mod.get_llm_engine] = lambda: LLMEngine(adapter)
    return adapter


def _use_gemini(*responses, include_summary=False):
    gemini = GeminiClient(client=SimpleNamespace(models=FakeModels(responses)))
    generator = MarketAnalysisGenerator(gemini, include_summary=include_summary)
    main_mod.app.dependency_overrides[main_mod.get_market_analysis] = lambda: generator
    return generator


def test_root_and_health(client):
    _use_adapter(FakeAdapter(available=False))
    _use_gemini()

    assert client.get("/").json()["ok"] is True
    assert client.get("/healthz").json() == {"ok": True, "llm": False, "gemini": True}


def test_templates_catalogue(client):
    body = client.get("/api/templates").json()

    ids = [t["id"] for t in body["templates"]]
    assert ids == ["mission-statement", "product-description"]
    assert body["templates"][0]["variables"] == ["productIdea"]


def test_generate_success(client):
    adapter = _use_adapter(FakeAdapter())

    resp = client.post(
        "/api/generate",
        json={"templateId": "mission-statement", "input": {"productIdea": "A mobile app for personalized workout plans"}},
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "content": "<h1>Mission</h1>",
        "model": "gpt-4o",
        "usage": {"promptTokens": 10, "completionTokens": 20, "totalTokens": 30},
    }
    prompt, options = adapter.calls[0]
    assert "A mobile app for personalized workout plans" in prompt
    assert options.system_message


def test_generate_missing_fields(client):
    _use_adapter(FakeAdapter())

    resp = client.post("/api/generate", json={"templateId": "mission-statement"})

    assert resp.status_code == 400
    assert resp.json() == {
        "error": {"message": "Missing required fields: templateId or input", "code": "INVALID_REQUEST"}
    }


def test_generate_malformed_body(client):
    _use_adapter(FakeAdapter())

    resp = client.post("/api/generate", content="not json", headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_REQUEST"


def test_generate_unknown_template(client):
    _use_adapter(FakeAdapter())

    resp = client.post("/api/generate", json={"templateId": "nonexistent-id", "input": {}})

    assert resp.status_code == 400
    assert resp.json()["error"] == {
        "message": "Template with id 'nonexistent-id' not found",
        "code": "TEMPLATE_NOT_FOUND",
        "details": {"templateId": "nonexistent-id"},
    }


def test_generate_missing_variable(client):
    adapter = _use_adapter(FakeAdapter())

    resp = client.post("/api/generate", json={"templateId": "product-description", "input": {"productName": "X"}})

    error = resp.json()["error"]
    assert resp.status_code == 400
    assert error["code"] == "MISSING_VARIABLE"
    assert error["details"]["missingVariables"][0] == "category"
    assert adapter.calls == []


def test_generate_service_unavailable(client):
    _use_adapter(FakeAdapter(available=False))

    resp = client.post("/api/generate", json={"templateId": "mission-statement", "input": {"productIdea": "x"}})

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


def test_generate_provider_error(client):
    _use_adapter(FakeAdapter(error=LLMError("Rate limit reached", code="rate_limit_exceeded", status=429)))

    resp = client.post("/api/generate", json={"templateId": "mission-statement", "input": {"productIdea": "x"}})

    assert resp.status_code == 500
    assert resp.json() == {"error": {"message": "Rate limit reached", "code": "INTERNAL_ERROR"}}


@pytest.mark.parametrize("payload", [{"projectDescription": ""}, {}])
def test_market_analysis_requires_description(client, payload):
    _use_gemini()

    resp = client.post("/api/market-analysis", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Project description is required"}


def test_market_analysis_invalid_body(client):
    _use_gemini()

    resp = client.post("/api/market-analysis", json={"projectDescription": ["not", "a", "string"]})

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_market_analysis_unavailable(client):
    main_mod.app.dependency_overrides[main_mod.get_market_analysis] = lambda: MarketAnalysisGenerator(
        GeminiClient(api_key="")
    )

    resp = client.post("/api/market-analysis", json={"projectDescription": "Idea"})

    assert resp.status_code == 503


def test_market_analysis_success(client):
    _use_gemini(_text("<h1>Market</h1><p>Growing.</p>"), _text("not json"))

    resp = client.post("/api/market-analysis", json={"projectDescription": "A mobile app for workouts"})

    body = resp.json()
    assert resp.status_code == 200
    assert body["htmlContent"] == "<h1>Market</h1><p>Growing.</p>"
    assert body["content"] == "# Market\n\nGrowing."
    assert body["isGrounded"] is False
    assert body["searchSuggestions"] == []
    assert body["renderedContent"] is None
    assert body["chartData"] == get_fallback_chart_data()


def test_market_analysis_failure(client):
    _use_gemini(RuntimeError("network down"))

    resp = client.post("/api/market-analysis", json={"projectDescription": "Idea"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to generate market analysis"}


def test_summary_endpoint(client):
    _use_gemini(_text("**Short** summary."))

    resp = client.post("/api/market-analysis-summary", json={"analysisContent": "<p>Long analysis</p>"})
    assert resp.json() == {"summary": "Short summary."}

    missing = client.post("/api/market-analysis-summary", json={})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Analysis content is required"}


def test_chart_data_endpoint(client):
    charts = {"pieChart": [{"name": "A", "value": 60}, {"name": "B", "value": 40}]}
    _use_gemini(_text(json.dumps(charts)))

    resp = client.post("/api/market-analysis/chart-data", json={"content": "Market text", "minItems": 2})

    assert resp.status_code == 200
    assert resp.json() == {"chartData": charts}

    missing = client.post("/api/market-analysis/chart-data", json={"content": ""})
    assert missing.status_code == 400
