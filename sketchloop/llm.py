"""LLM provider abstraction using LangChain.

Each provider id maps to a factory that builds a LangChain chat model.
Adding a vendor means registering a factory with ``register_provider``.
"""

import base64
import logging
from typing import AsyncIterator, Callable, Optional, Sequence, Union

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

import config

from .errors import ProviderError
from .schemas import ChatMessage, ImageInput, TextPart, TokenUsage

logger = logging.getLogger(__name__)


class ProviderConfig(BaseModel):
    """Everything needed to construct a provider client."""

    provider_id: str = Field(..., description="Registry key, e.g. 'openai'")
    model_id: str = Field(..., description="Vendor model name")
    credential: Optional[str] = Field(default=None, description="API key")
    endpoint: Optional[str] = Field(default=None, description="Custom base URL")


class TextDelta(BaseModel):
    """A chunk of streamed text."""

    text: str


class UsageReport(BaseModel):
    """Final token usage, emitted once when the stream ends."""

    usage: TokenUsage


StreamEvent = Union[TextDelta, UsageReport]

ProviderFactory = Callable[[ProviderConfig], BaseChatModel]

PROVIDERS: dict[str, ProviderFactory] = {}


def register_provider(provider_id: str) -> Callable[[ProviderFactory], ProviderFactory]:
    """Decorator registering a chat model factory under ``provider_id``."""

    def decorator(factory: ProviderFactory) -> ProviderFactory:
        PROVIDERS[provider_id] = factory
        return factory

    return decorator


def _openai_compatible(cfg: ProviderConfig, default_base_url: Optional[str]) -> BaseChatModel:
    kwargs = {}
    base_url = cfg.endpoint or default_base_url
    if base_url:
        kwargs["base_url"] = base_url
    return ChatOpenAI(
        model=cfg.model_id,
        api_key=cfg.credential or config.API_KEYS.get(cfg.provider_id),
        max_tokens=config.MAX_OUTPUT_TOKENS,
        stream_usage=True,
        **kwargs,
    )


@register_provider("openai")
def _openai(cfg: ProviderConfig) -> BaseChatModel:
    return _openai_compatible(cfg, None)


@register_provider("openrouter")
def _openrouter(cfg: ProviderConfig) -> BaseChatModel:
    return _openai_compatible(cfg, config.OPENROUTER_BASE_URL)


@register_provider("xai")
def _xai(cfg: ProviderConfig) -> BaseChatModel:
    return _openai_compatible(cfg, config.XAI_BASE_URL)


@register_provider("custom")
def _custom(cfg: ProviderConfig) -> BaseChatModel:
    if not cfg.endpoint:
        raise ValueError("The custom provider needs an endpoint")
    return _openai_compatible(cfg, None)


@register_provider("anthropic")
def _anthropic(cfg: ProviderConfig) -> BaseChatModel:
    kwargs = {}
    if cfg.endpoint:
        kwargs["base_url"] = cfg.endpoint
    return ChatAnthropic(
        model=cfg.model_id,
        api_key=cfg.credential or config.ANTHROPIC_API_KEY,
        max_tokens=config.MAX_OUTPUT_TOKENS,
        **kwargs,
    )


@register_provider("google")
def _google(cfg: ProviderConfig) -> BaseChatModel:
    kwargs = {}
    if cfg.endpoint:
        kwargs["client_options"] = {"api_endpoint": cfg.endpoint}
    return ChatGoogleGenerativeAI(
        model=cfg.model_id,
        google_api_key=cfg.credential or config.GOOGLE_API_KEY,
        max_output_tokens=config.MAX_OUTPUT_TOKENS,
        **kwargs,
    )



def get_chat_model(cfg: ProviderConfig) -> BaseChatModel:
    """Get a chat model instance for a provider configuration.

    Args:
        cfg: Provider, model, credential and optional endpoint.

    Returns:
        LangChain chat model instance.

    Raises:
        ValueError: If the provider id is not registered.
    """
    factory = PROVIDERS.get(cfg.provider_id)
    if factory is None:
        known = ", ".join(sorted(PROVIDERS))
        raise ValueError(f"Unknown provider: {cfg.provider_id}. Use one of: {known}.")
    return factory(cfg)


def _image_url(image: ImageInput) -> str:
    if image.url is not None:
        return image.url
    data = base64.b64encode(image.data).decode("utf-8")
    return f"data:{image.media_type};base64,{data}"


def to_langchain_messages(messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    """Convert provider-neutral messages into LangChain messages."""
    converted: list[BaseMessage] = []
    for message in messages:
        if isinstance(message.content, str):
            content = message.content
        else:
            content = []
            for part in message.content:
                if isinstance(part, TextPart):
                    content.append({"type": "text", "text": part.text})
                else:
                    content.append({
                        "type": "image_url",
                        "image_url": {"url": _image_url(part.image)},
                    })
        if message.role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


def chunk_text(chunk: BaseMessage) -> str:
    """Text carried by a streamed chunk (string or content-block form)."""
    content = chunk.content
    if isinstance(content, str):
        return content
    texts = []
    for block in content:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            texts.append(block.get("text", ""))
    return "".join(texts)


class ProviderAdapter:
    """Uniform streaming interface over the registered chat models."""

    def __init__(self, cfg: ProviderConfig, model: Optional[BaseChatModel] = None):
        """Initialize the adapter.

        Args:
            cfg: Provider configuration.
            model: Prebuilt chat model. Built from ``cfg`` on first use if None.
        """
        self.config = cfg
        self._model = model

    @property
    def model(self) -> BaseChatModel:
        """Lazy-load the chat model."""
        if self._model is None:
            self._model = get_chat_model(self.config)
        return self._model

    async def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[StreamEvent]:
        """Stream a completion.

        Yields:
            TextDelta for every non-empty text chunk, then one UsageReport.

        Raises:
            ProviderError: On any client construction, transport or vendor error.
        """
        usage = TokenUsage()
        try:
            lc_messages = to_langchain_messages(messages)
            async for chunk in self.model.astream(lc_messages):
                text = chunk_text(chunk)
                if text:
                    yield TextDelta(text=text)
                meta = getattr(chunk, "usage_metadata", None)
                if meta:
                    usage.input_tokens += meta.get("input_tokens", 0) or 0
                    usage.output_tokens += meta.get("output_tokens", 0) or 0
        except ProviderError:
            raise
        except Exception as exc:
            logger.debug("Provider %s failed: %r", self.config.provider_id, exc)
            raise ProviderError.from_exception(exc) from exc
        yield UsageReport(usage=usage)


def create_provider(
    provider_id: str,
    model_id: str,
    credential: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> ProviderAdapter:
    """Convenience constructor for a ProviderAdapter."""
    return ProviderAdapter(ProviderConfig(
        provider_id=provider_id,
        model_id=model_id,
        credential=credential,
        endpoint=endpoint,
    ))
