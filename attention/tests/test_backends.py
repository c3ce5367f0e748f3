"""
Tests for Classification Backends

HTTP is served by httpx.MockTransport, so no request leaves the process.
"""

import json
import pytest
import httpx

from attention.common.config import GuardrailConfig
from attention.common.schemas import AttentionEvent, Relevance
from attention.pipeline.backends import (
    CLASSIFICATION_SCHEMA,
    ChatBackend,
    ResponsesBackend,
    create_backend,
    resolve_provider,
)


def make_event(**overrides) -> AttentionEvent:
    data = {
        "source": "whoop",
        "kind": "recovery",
        "payload": {"status": "critical", "readiness_score": 23},
        "received_at": "2026-10-17T06:30:00+00:00",
    }
    data.update(overrides)
    return AttentionEvent(**data)


def responses_reply(obj) -> dict:
    return {"output": [{"content": [{"type": "output_text", "text": json.dumps(obj)}]}]}


class Recorder:
    """MockTransport handler that records requests and replays one response"""

    def __init__(self, response=None, exc=None):
        self.requests = []
        self._response = response
        self._exc = exc

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._exc is not None:
            raise self._exc
        return self._response


def client_for(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


# ============================================================================
# ResponsesBackend
# ============================================================================

class TestResponsesBackend:
    @pytest.mark.asyncio
    async def test_classify_success(self):
        recorder = Recorder(httpx.Response(200, json=responses_reply({
            "urgency_score": 8.5,
            "relevance": "high",
            "filtered": False,
            "reasons": ["Recovery is critically low"],
            "context": {"hrv_drop": "38%"},
            "tags": ["health"],
        })))
        async with client_for(recorder) as client:
            backend = ResponsesBackend(api_key="sk-test", base_url="https://codex.example/v1", http_client=client)
            result = await backend.classify(make_event())

        assert result.urgency_score == 8.5
        assert result.relevance == Relevance.HIGH
        assert result.filtered is False
        assert result.reasons == ["Recovery is critically low"]
        assert result.context == {"hrv_drop": "38%"}
        assert result.tags == ["health"]
        assert result.version == "codex-o4-mini"
        assert str(recorder.requests[0].url) == "https://codex.example/v1/responses"

    @pytest.mark.asyncio
    async def test_request_headers_and_body(self):
        recorder = Recorder(httpx.Response(200, json=responses_reply({
            "urgency_score": 1, "relevance": "low", "filtered": False, "reasons": [],
        })))
        async with client_for(recorder) as client:
            backend = ResponsesBackend(
                api_key="sk-test",
                policy_uri="https://policy.example/attention",
                max_output_tokens=200,
                allow_tools=["calendar"],
                http_client=client,
            )
            await backend.classify(make_event())

        request = recorder.requests[0]
        assert request.headers["authorization"] == "Bearer sk-test"
        assert request.headers["x-codex-mode"] == "non_interactive_ci"
        assert request.headers["x-codex-guardrails-policy"] == "https://policy.example/attention"

        body = json.loads(request.content)
        assert body["model"] == "o4-mini"
        assert body["guardrails"] == {"allow_tools": ["calendar"], "temperature": 0, "max_output_tokens": 200}
        assert body["response_format"]["type"] == "json_schema"
        assert body["response_format"]["json_schema"]["schema"] == CLASSIFICATION_SCHEMA
        assert body["input"][0]["role"] == "system"
        assert "https://policy.example/attention" in body["input"][0]["content"]
        user_text = json.loads(body["input"][1]["content"][0]["text"])
        assert user_text["event"]["source"] == "whoop"
        assert user_text["event"]["payload"]["readiness_score"] == 23

    def test_headers_without_codex_mode(self):
        backend = ResponsesBackend(api_key=None, require_api_key=False, send_codex_headers=False)
        headers = backend.build_headers()
        assert "authorization" not in headers
        assert "x-codex-mode" not in headers
        assert "x-codex-guardrails-policy" not in headers

    @pytest.mark.asyncio
    async def test_missing_api_key_makes_no_request(self):
        recorder = Recorder(httpx.Response(200, json={}))
        async with client_for(recorder) as client:
            backend = ResponsesBackend(api_key=None, http_client=client)
            result = await backend.classify(make_event())

        assert result is None
        assert recorder.requests == []
        assert backend.is_configured is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score,expected", [(14, 10.0), (-3, 0.0), (7.25, 7.25)])
    async def test_score_clamped(self, score, expected):
        recorder = Recorder(httpx.Response(200, json=responses_reply({
            "urgency_score": score, "relevance": "medium", "filtered": False, "reasons": [],
        })))
        async with client_for(recorder) as client:
            backend = ResponsesBackend(api_key="sk", http_client=client)
            result = await backend.classify(make_event())
        assert result.urgency_score == expected

    @pytest.mark.asyncio
    async def test_output_text_field(self):
        reply = {"output_text": '{"urgency_score": 3, "relevance": "low", "filtered": true, "reasons": ["noise"]}'}
        async with client_for(Recorder(httpx.Response(200, json=reply))) as client:
            result = await ResponsesBackend(api_key="sk", http_client=client).classify(make_event())
        assert result.urgency_score == 3
        assert result.filtered is True

    @pytest.mark.asyncio
    async def test_non_2xx_returns_none(self):
        async with client_for(Recorder(httpx.Response(500, text="upstream exploded"))) as client:
            result = await ResponsesBackend(api_key="sk", http_client=client).classify(make_event())
        assert result is None

    @pytest.mark.asyncio
    async def test_non_json_body_returns_none(self):
        async with client_for(Recorder(httpx.Response(200, text="<html>oops</html>"))) as client:
            result = await ResponsesBackend(api_key="sk", http_client=client).classify(make_event())
        assert result is None

    @pytest.mark.asyncio
    async def test_unexpected_payload_returns_none(self):
        async with client_for(Recorder(httpx.Response(200, json={"output": []}))) as client:
            result = await ResponsesBackend(api_key="sk", http_client=client).classify(make_event())
        assert result is None

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        recorder = Recorder(exc=httpx.ReadTimeout("timed out"))
        async with client_for(recorder) as client:
            result = await ResponsesBackend(api_key="sk", timeout=0.1, http_client=client).classify(make_event())
        assert result is None
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_error_returns_none(self):
        recorder = Recorder(exc=httpx.ConnectError("refused"))
        async with client_for(recorder) as client:
            result = await ResponsesBackend(api_key="sk", http_client=client).classify(make_event())
        assert result is None


# ============================================================================
# Reply parsing
# ============================================================================

class TestParseClassification:
    @pytest.fixture
    def backend(self):
        return ChatBackend()

    def test_fenced_reply(self, backend):
        raw = '```json\n{"urgency_score": 6, "relevance": "medium", "filtered": false, "reasons": ["r"]}\n```'
        result = backend.parse_classification(raw)
        assert result.urgency_score == 6
        assert result.relevance == Relevance.MEDIUM

    def test_camel_case_score_accepted(self, backend):
        result = backend.parse_classification('{"urgencyScore": 4, "relevance": "low"}')
        assert result.urgency_score == 4

    def test_unknown_relevance_coerced_to_low(self, backend):
        result = backend.parse_classification('{"urgency_score": 4, "relevance": "critical"}')
        assert result.relevance == Relevance.LOW

    def test_relevance_case_insensitive(self, backend):
        result = backend.parse_classification('{"urgency_score": 4, "relevance": "HIGH"}')
        assert result.relevance == Relevance.HIGH

    def test_missing_optional_fields_default(self, backend):
        result = backend.parse_classification('{"urgency_score": 2}')
        assert result.filtered is False
        assert result.reasons == []
        assert result.context == {}
        assert result.tags == []

    @pytest.mark.parametrize("raw", [
        "I cannot classify this event.",
        '{"relevance": "high"}',
        '{"urgency_score": "nine"}',
        '{"urgency_score": true}',
        '{"urgency_score": NaN}',
        '{"urgency_score": 5,,}',
    ])
    def test_unusable_reply_returns_none(self, backend, raw):
        assert backend.parse_classification(raw) is None

    def test_infinite_score_clamped(self, backend):
        result = backend.parse_classification('{"urgency_score": Infinity}')
        assert result.urgency_score == 10.0


# ============================================================================
# ChatBackend
# ============================================================================

class TestChatBackend:
    @pytest.mark.asyncio
    async def test_classify_success_without_key(self):
        reply = {"message": {"role": "assistant", "content": (
            '<think>the user slept badly</think>'
            '{"urgency_score": 9, "relevance": "high", "filtered": false, "reasons": ["sleep debt"]}'
        )}}
        recorder = Recorder(httpx.Response(200, json=reply))
        async with client_for(recorder) as client:
            backend = ChatBackend(http_client=client)
            result = await backend.classify(make_event())

        assert result.urgency_score == 9
        assert result.version == "ollama-gpt-oss:20b"

        request = recorder.requests[0]
        assert str(request.url) == "http://localhost:11434/api/chat"
        assert "authorization" not in request.headers
        body = json.loads(request.content)
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0}
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_structured_content_serialized(self):
        reply = {"message": {"content": {"urgency_score": 2, "relevance": "low"}}}
        async with client_for(Recorder(httpx.Response(200, json=reply))) as client:
            result = await ChatBackend(http_client=client).classify(make_event())
        assert result.urgency_score == 2

    @pytest.mark.asyncio
    async def test_missing_message_returns_none(self):
        async with client_for(Recorder(httpx.Response(200, json={"done": True}))) as client:
            result = await ChatBackend(http_client=client).classify(make_event())
        assert result is None

    @pytest.mark.asyncio
    async def test_optional_key_sent(self):
        recorder = Recorder(httpx.Response(200, json={"message": {"content": '{"urgency_score": 1}'}}))
        async with client_for(recorder) as client:
            await ChatBackend(api_key="local-key", http_client=client).classify(make_event())
        assert recorder.requests[0].headers["authorization"] == "Bearer local-key"


# ============================================================================
# Provider selection
# ============================================================================

class TestProviderSelection:
    def test_explicit_provider(self):
        assert resolve_provider(GuardrailConfig(provider="Ollama")) == "ollama"
        assert resolve_provider(GuardrailConfig(provider="codex", base_url="http://localhost:11434")) == "codex"

    def test_detect_from_base_url(self):
        assert resolve_provider(GuardrailConfig(base_url="http://localhost:11434")) == "ollama"
        assert resolve_provider(GuardrailConfig(base_url="http://ollama.internal:8080")) == "ollama"
        assert resolve_provider(GuardrailConfig(base_url="https://api.openai.com/v1")) == "codex"

    def test_unknown_provider_falls_back_to_detection(self, caplog):
        assert resolve_provider(GuardrailConfig(provider="bard")) == "codex"
        assert "Unsupported classifier provider" in caplog.text

    def test_create_codex_backend_defaults(self):
        backend = create_backend(GuardrailConfig())
        assert isinstance(backend, ResponsesBackend)
        assert backend.base_url == "https://api.openai.com/v1"
        assert backend.model == "o4-mini"
        assert backend.is_configured is False

    def test_create_ollama_backend_needs_no_key(self):
        backend = create_backend(GuardrailConfig(provider="ollama", model="llama3"))
        assert isinstance(backend, ChatBackend)
        assert backend.model == "llama3"
        assert backend.is_configured is True

    def test_require_api_key_override(self):
        backend = create_backend(GuardrailConfig(provider="ollama", require_api_key=True))
        assert backend.is_configured is False

        backend = create_backend(GuardrailConfig(require_api_key=False, send_codex_headers=False))
        assert backend.is_configured is True
        assert "x-codex-mode" not in backend.build_headers()

    def test_trailing_slash_stripped(self):
        backend = create_backend(GuardrailConfig(base_url="https://codex.example/v1/", api_key="sk"))
        assert backend.base_url == "https://codex.example/v1"
