"""Tests for provider variants, using mocked HTTP transports."""

import asyncio
import json

import httpx
import pytest
from openai import AsyncOpenAI

from concept_graph.config import Provider, Settings
from concept_graph.errors import (
    ConfigError,
    ContextOverflowError,
    FatalExtractionError,
    MalformedResponseError,
    ProviderUnavailableError,
    TransientExtractionError,
    is_context_overflow,
)
from concept_graph.llm import (
    AnthropicExtractor,
    GoogleExtractor,
    OllamaExtractor,
    OpenAIExtractor,
    RelationExtractor,
    classify_http_error,
    create_extractor,
)

RELATIONS = '[{"node_1": "Rust", "node_2": "Cargo", "edge": "uses"}]'


def transport(status=200, payload=None, text=None, recorder=None):
    """Build a mock transport returning one fixed response."""

    def handler(request: httpx.Request) -> httpx.Response:
        if recorder is not None:
            recorder.append(request)
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


def failing_transport(error):
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    return httpx.MockTransport(handler)


class TestClassification:
    """Tests for HTTP error classification."""

    def test_auth_is_fatal(self):
        """Test 401 and 403."""
        assert isinstance(classify_http_error("x", 401, "bad key"), FatalExtractionError)
        assert isinstance(classify_http_error("x", 403, "forbidden"), FatalExtractionError)

    def test_rate_limit_and_server_errors_are_transient(self):
        """Test 429 and 5xx."""
        assert isinstance(classify_http_error("x", 429, "slow down"), TransientExtractionError)
        assert isinstance(classify_http_error("x", 503, "unavailable"), TransientExtractionError)

    def test_overflow_body(self):
        """Test that overflow wording wins for 4xx responses."""
        error = classify_http_error("x", 400, "This model's maximum context length is 8192 tokens")

        assert isinstance(error, ContextOverflowError)
        assert error.kind == "overflow"

    def test_other_client_errors_are_fatal(self):
        """Test an unknown model."""
        assert isinstance(classify_http_error("x", 404, "model not found"), FatalExtractionError)

    def test_overflow_indicators(self):
        """Test overflow message detection."""
        assert is_context_overflow("Error: context length exceeded")
        assert is_context_overflow("Token limit reached")
        assert not is_context_overflow("Network error occurred")


class TestAnthropicExtractor:
    """Tests for AnthropicExtractor."""

    def test_extract(self):
        """Test request shape and response parsing."""
        requests = []
        payload = {"content": [{"type": "text", "text": RELATIONS}]}
        extractor = AnthropicExtractor(
            api_key="key",
            model="claude-sonnet-4-20250514",
            transport=transport(payload=payload, recorder=requests),
        )

        triples = asyncio.run(extractor.extract("Rust uses Cargo.", "programming"))

        assert [(t.subject, t.object) for t in triples] == [("Rust", "Cargo")]
        request = requests[0]
        body = json.loads(request.content)
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "key"
        assert body["temperature"] == 0.0
        assert "programming" in body["system"]

    def test_overflow(self):
        """Test a prompt that is too long."""
        error_body = {"error": {"type": "invalid_request_error", "message": "prompt is too long: 210000 tokens"}}
        extractor = AnthropicExtractor(api_key="key", model="m", transport=transport(400, error_body))

        with pytest.raises(ContextOverflowError):
            asyncio.run(extractor.extract("text"))

    def test_missing_text_is_malformed(self):
        """Test a response without text blocks."""
        extractor = AnthropicExtractor(api_key="key", model="m", transport=transport(payload={"content": []}))

        with pytest.raises(MalformedResponseError):
            asyncio.run(extractor.extract("text"))

    def test_preflight_requires_key(self):
        """Test that a missing key is a configuration error."""
        with pytest.raises(ConfigError):
            asyncio.run(AnthropicExtractor(api_key="", model="m").preflight())


class TestGoogleExtractor:
    """Tests for GoogleExtractor."""

    def test_extract(self):
        """Test the generateContent request and response."""
        requests = []
        payload = {"candidates": [{"content": {"parts": [{"text": RELATIONS}]}}]}
        extractor = GoogleExtractor(
            api_key="gkey",
            model="gemini-2.0-flash",
            transport=transport(payload=payload, recorder=requests),
        )

        triples = asyncio.run(extractor.extract("Rust uses Cargo."))

        assert len(triples) == 1
        assert requests[0].url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
        assert requests[0].headers["x-goog-api-key"] == "gkey"

    def test_blocked_prompt_over_token_limit(self):
        """Test a prompt rejected for its size."""
        payload = {"promptFeedback": {"blockReason": "OTHER", "message": "input token count exceeds the maximum"}}
        extractor = GoogleExtractor(api_key="k", model="m", transport=transport(payload=payload))

        with pytest.raises(ContextOverflowError):
            asyncio.run(extractor.extract("text"))

    def test_no_candidates_is_malformed(self):
        """Test an empty answer."""
        extractor = GoogleExtractor(api_key="k", model="m", transport=transport(payload={}))

        with pytest.raises(MalformedResponseError):
            asyncio.run(extractor.extract("text"))


class TestOllamaExtractor:
    """Tests for OllamaExtractor."""

    def test_extract(self):
        """Test the generate request and response."""
        requests = []
        extractor = OllamaExtractor(
            model="mistral",
            base_url="http://ollama:11434/",
            transport=transport(payload={"response": RELATIONS}, recorder=requests),
        )

        triples = asyncio.run(extractor.extract("Rust uses Cargo."))

        body = json.loads(requests[0].content)
        assert len(triples) == 1
        assert str(requests[0].url) == "http://ollama:11434/api/generate"
        assert body["stream"] is False
        assert body["options"]["num_ctx"] == 32768

    def test_server_error_is_transient(self):
        """Test a 500 from the server."""
        extractor = OllamaExtractor(model="m", transport=transport(500, text="model crashed"))

        with pytest.raises(TransientExtractionError):
            asyncio.run(extractor.extract("text"))

    def test_connection_error_is_transient(self):
        """Test an unreachable server during extraction."""
        extractor = OllamaExtractor(model="m", transport=failing_transport(httpx.ConnectError("refused")))

        with pytest.raises(TransientExtractionError):
            asyncio.run(extractor.extract("text"))

    def test_non_json_body_is_malformed(self):
        """Test a body that is not JSON."""
        extractor = OllamaExtractor(model="m", transport=transport(200, text="<html>proxy</html>"))

        with pytest.raises(MalformedResponseError):
            asyncio.run(extractor.extract("text"))

    def test_preflight_unreachable(self):
        """Test that an unreachable server fails preflight."""
        extractor = OllamaExtractor(model="m", transport=failing_transport(httpx.ConnectError("refused")))

        with pytest.raises(ProviderUnavailableError):
            asyncio.run(extractor.preflight())

    def test_preflight_ok(self):
        """Test a reachable server."""
        extractor = OllamaExtractor(model="m", transport=transport(payload={"models": []}))

        asyncio.run(extractor.preflight())


class TestOpenAIExtractor:
    """Tests for OpenAIExtractor with a mocked HTTP client."""

    def make(self, status=200, payload=None):
        client = AsyncOpenAI(
            api_key="test",
            base_url="http://openai.test/v1",
            max_retries=0,
            http_client=httpx.AsyncClient(transport=transport(status, payload)),
        )
        return OpenAIExtractor(api_key="test", model="gpt-4o", client=client)

    def test_extract(self):
        """Test a chat completion response."""
        payload = {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gpt-4o",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": RELATIONS},
                    "finish_reason": "stop",
                }
            ],
        }

        triples = asyncio.run(self.make(payload=payload).extract("Rust uses Cargo."))

        assert [(t.subject, t.relation, t.object) for t in triples] == [("Rust", "uses", "Cargo")]

    def test_context_length_exceeded(self):
        """Test the OpenAI overflow error code."""
        payload = {
            "error": {
                "message": "This model's maximum context length is 8192 tokens.",
                "type": "invalid_request_error",
                "code": "context_length_exceeded",
            }
        }

        with pytest.raises(ContextOverflowError):
            asyncio.run(self.make(400, payload).extract("text"))

    def test_auth_error_is_fatal(self):
        """Test an invalid key."""
        payload = {"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}}

        with pytest.raises(FatalExtractionError):
            asyncio.run(self.make(401, payload).extract("text"))

    def test_rate_limit_is_transient(self):
        """Test a 429."""
        payload = {"error": {"message": "Rate limit reached", "type": "requests"}}

        with pytest.raises(TransientExtractionError):
            asyncio.run(self.make(429, payload).extract("text"))

    def test_preflight_requires_key(self):
        """Test that a missing key is a configuration error."""
        with pytest.raises(ConfigError):
            asyncio.run(OpenAIExtractor(api_key="", model="gpt-4o").preflight())


class TestCreateExtractor:
    """Tests for the provider factory."""

    def test_each_provider(self):
        """Test that every provider yields its variant."""
        settings = Settings(_env_file=None, openai_api_key="o", anthropic_api_key="a", google_api_key="g")

        assert isinstance(create_extractor("openai", settings), OpenAIExtractor)
        assert isinstance(create_extractor(Provider.ANTHROPIC, settings), AnthropicExtractor)
        assert isinstance(create_extractor("GOOGLE", settings), GoogleExtractor)
        assert isinstance(create_extractor("ollama", settings), OllamaExtractor)

    def test_variants_satisfy_protocol(self):
        """Test structural conformance to RelationExtractor."""
        settings = Settings(_env_file=None)
        for provider in Provider:
            assert isinstance(create_extractor(provider, settings), RelationExtractor)

    def test_model_override_and_defaults(self):
        """Test model selection."""
        settings = Settings(_env_file=None, provider=Provider.OLLAMA, model="llama3.2:3b")

        assert create_extractor("ollama", settings).model == "llama3.2:3b"
        assert create_extractor("anthropic", settings).model == "claude-sonnet-4-20250514"
        assert create_extractor("ollama", settings, model="phi3:mini").model == "phi3:mini"

    def test_unknown_provider(self):
        """Test that an unknown provider is a configuration error."""
        with pytest.raises(ConfigError):
            create_extractor("mystery", Settings(_env_file=None))
