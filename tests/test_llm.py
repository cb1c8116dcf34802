"""Tests for the provider registry, message conversion and streaming adapter."""

import asyncio
import base64

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

import config
from sketchloop import llm
from sketchloop.errors import (
    CancellationError,
    PersistenceError,
    ProviderError,
    classify_error,
    error_message,
)
from sketchloop.llm import (
    PROVIDERS,
    ProviderAdapter,
    ProviderConfig,
    TextDelta,
    UsageReport,
    chunk_text,
    create_provider,
    get_chat_model,
    register_provider,
    to_langchain_messages,
)
from sketchloop.schemas import ChatMessage, ErrorKind, ImageInput, ImagePart, TextPart


class ScriptedChatModel:
    """Stands in for a chat model: yields fixed chunks, then optionally raises."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error

    async def astream(self, messages):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.error is not None:
            raise self.error


class AnthropicStyleError(Exception):
    def __init__(self, body):
        super().__init__("Error code: 529")
        self.body = body


class OpenAIStyleError(Exception):
    def __init__(self, message, code, type, param=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = type
        self.param = param
        self.body = {"message": message, "code": code, "type": type, "param": param}


async def collect(adapter, messages=None):
    messages = messages or [ChatMessage(role="user", content="draw")]
    return [event async for event in adapter.stream(messages)]


class TestRegistry:
    """Provider id to chat model factory."""

    def test_builtin_providers(self):
        assert {"openai", "anthropic", "google", "openrouter", "xai", "custom"} <= set(PROVIDERS)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider: nope"):
            get_chat_model(ProviderConfig(provider_id="nope", model_id="m"))

    def test_openai_model(self):
        model = get_chat_model(ProviderConfig(provider_id="openai", model_id="gpt-4o", credential="sk-test"))
        assert model.model_name == "gpt-4o"

    def test_openrouter_uses_its_base_url(self):
        model = get_chat_model(ProviderConfig(provider_id="openrouter", model_id="x/y", credential="sk-test"))
        assert model.openai_api_base == config.OPENROUTER_BASE_URL

    def test_endpoint_overrides_base_url(self):
        cfg = ProviderConfig(provider_id="xai", model_id="grok", credential="k", endpoint="http://localhost:9000/v1")
        assert get_chat_model(cfg).openai_api_base == "http://localhost:9000/v1"

    def test_custom_needs_endpoint(self):
        with pytest.raises(ValueError, match="endpoint"):
            get_chat_model(ProviderConfig(provider_id="custom", model_id="m", credential="k"))

    def test_anthropic_model(self):
        model = get_chat_model(ProviderConfig(provider_id="anthropic", model_id="claude-sonnet-4-5", credential="sk-test"))
        assert model.model == "claude-sonnet-4-5"

    def test_google_model(self):
        model = get_chat_model(ProviderConfig(provider_id="google", model_id="gemini-2.5-flash", credential="test-key"))
        assert isinstance(model, ChatGoogleGenerativeAI)
        assert model.model.endswith("gemini-2.5-flash")
        assert model.max_output_tokens == config.MAX_OUTPUT_TOKENS

    def test_register_provider(self, monkeypatch):
        monkeypatch.setattr(llm, "PROVIDERS", dict(PROVIDERS))

        @register_provider("echo")
        def _echo(cfg):
            return GenericFakeChatModel(messages=iter([AIMessage(content=cfg.model_id)]))

        assert llm.PROVIDERS["echo"] is _echo
        assert "echo" not in PROVIDERS

    def test_create_provider_is_lazy(self):
        adapter = create_provider("nope", "m")
        assert adapter.config.provider_id == "nope"
        assert adapter._model is None


class TestMessageConversion:
    """Provider-neutral messages to LangChain messages."""

    def test_roles_and_plain_text(self):
        converted = to_langchain_messages([
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello"),
        ])
        assert isinstance(converted[0], HumanMessage)
        assert isinstance(converted[1], AIMessage)
        assert converted[1].content == "hello"

    def test_images_become_image_urls(self):
        message = ChatMessage(role="user", content=[
            ImagePart(image=ImageInput(data=b"png-bytes")),
            ImagePart(image=ImageInput(url="https://example.com/a.png")),
            TextPart(text="draw"),
        ])
        content = to_langchain_messages([message])[0].content
        encoded = base64.b64encode(b"png-bytes").decode("utf-8")
        assert content[0] == {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}}
        assert content[1]["image_url"]["url"] == "https://example.com/a.png"
        assert content[2] == {"type": "text", "text": "draw"}

    def test_chunk_text(self):
        assert chunk_text(AIMessageChunk(content="abc")) == "abc"
        blocks = AIMessageChunk(content=[
            {"type": "text", "text": "a"},
            {"type": "thinking", "thinking": "hmm"},
            "b",
        ])
        assert chunk_text(blocks) == "ab"


@pytest.mark.asyncio
class TestProviderAdapter:
    """Streaming contract."""

    async def test_text_then_usage(self):
        model = GenericFakeChatModel(messages=iter([AIMessage(content="a small red circle")]))
        adapter = ProviderAdapter(ProviderConfig(provider_id="openai", model_id="m"), model=model)
        events = await collect(adapter)
        texts = [e.text for e in events if isinstance(e, TextDelta)]
        assert "".join(texts) == "a small red circle"
        assert isinstance(events[-1], UsageReport)
        assert sum(isinstance(e, UsageReport) for e in events) == 1

    async def test_usage_is_summed(self):
        model = ScriptedChatModel([
            AIMessageChunk(content="he", usage_metadata={"input_tokens": 10, "output_tokens": 1, "total_tokens": 11}),
            AIMessageChunk(content=""),
            AIMessageChunk(content="llo", usage_metadata={"input_tokens": 0, "output_tokens": 2, "total_tokens": 2}),
        ])
        adapter = ProviderAdapter(ProviderConfig(provider_id="openai", model_id="m"), model=model)
        events = await collect(adapter)
        assert [e.text for e in events if isinstance(e, TextDelta)] == ["he", "llo"]
        assert events[-1].usage.input_tokens == 10
        assert events[-1].usage.output_tokens == 3

    async def test_vendor_body_error(self):
        error = AnthropicStyleError({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        adapter = ProviderAdapter(
            ProviderConfig(provider_id="anthropic", model_id="m"),
            model=ScriptedChatModel([AIMessageChunk(content="par")], error=error),
        )
        with pytest.raises(ProviderError) as info:
            await collect(adapter)
        assert str(info.value) == "Overloaded | type: overloaded_error"

    async def test_vendor_attribute_error(self):
        error = OpenAIStyleError("Incorrect API key provided", code="invalid_api_key", type="invalid_request_error")
        adapter = ProviderAdapter(
            ProviderConfig(provider_id="openai", model_id="m"),
            model=ScriptedChatModel([], error=error),
        )
        with pytest.raises(ProviderError) as info:
            await collect(adapter)
        assert info.value.code == "invalid_api_key"
        assert str(info.value) == "Incorrect API key provided | type: invalid_request_error | code: invalid_api_key"

    async def test_construction_error_is_provider_error(self):
        adapter = create_provider("custom", "m", credential="k")
        with pytest.raises(ProviderError, match="endpoint"):
            await collect(adapter)


class TestErrors:
    """Error classification."""

    def test_classify(self):
        assert classify_error(ProviderError("x")) == ErrorKind.PROVIDER
        assert classify_error(PersistenceError("x")) == ErrorKind.PERSISTENCE
        assert classify_error(CancellationError()) == ErrorKind.CANCELLED
        assert classify_error(asyncio.CancelledError()) == ErrorKind.CANCELLED
        assert classify_error(KeyError("x")) == ErrorKind.INTERNAL

    def test_error_message(self):
        assert error_message(CancellationError()) == "Generation cancelled"
        assert error_message(asyncio.CancelledError()) == "Generation cancelled"
        assert error_message(RuntimeError()) == "RuntimeError"

    def test_provider_error_passthrough(self):
        original = ProviderError("quota", code="insufficient_quota")
        assert ProviderError.from_exception(original) is original

    def test_plain_exception(self):
        converted = ProviderError.from_exception(ConnectionError("connection reset"))
        assert str(converted) == "connection reset"
