from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Union

import anthropic
import openai

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

from llms import AnthropicClient, OpenAICompatClient

from .config import BackendConfig, RetryConfig
from .errors import (
    ModelBackendError,
    ModelRateLimitError,
    ModelTimeoutError,
    UnknownModelError,
)
from .retry import call_with_retry

logger = logging.getLogger(__name__)


class ModelId(str, Enum):
    """Closed set of interchangeable language-model backends."""

    GPT4O = "gpt-4o"  # hosted, high capability
    QWEN_PLUS = "qwen-plus"  # secondary hosted (DashScope)
    CLAUDE = "claude"  # hosted, default scorer
    LOCAL = "local"  # locally run open model behind Ollama

    @classmethod
    def parse(cls, value: Union[str, "ModelId"]) -> "ModelId":
        try:
            return cls(value)
        except ValueError as e:
            choices = ", ".join(m.value for m in cls)
            raise UnknownModelError(f"Unknown model: {value} (choose from {choices})") from e


@dataclass(frozen=True)
class ModelRequest:
    prompt: str
    system: str = ""
    temperature: float = 0.0
    max_output: int = 2000


@dataclass(frozen=True)
class ModelResponse:
    text: str
    model_id: str


class ModelBackend(ABC):
    """Uniform request/response contract shared by every provider."""

    model_id: ModelId

    @abstractmethod
    async def complete(self, request: ModelRequest) -> ModelResponse:
        ...


class OpenAICompatBackend(ModelBackend):
    """OpenAI, DashScope and Ollama models through ``llms.OpenAICompatClient``."""

    def __init__(self, model_id: ModelId, client):
        self.model_id = model_id
        self.client = client

    async def complete(self, request: ModelRequest) -> ModelResponse:
        try:
            text = await asyncio.to_thread(
                self.client.generate,
                request.prompt,
                system_prompt=request.system or None,
                temperature=request.temperature,
                max_tokens=request.max_output,
            )
        except openai.APITimeoutError as e:
            raise ModelTimeoutError(f"{self.model_id.value}: {e}") from e
        except openai.RateLimitError as e:
            raise ModelRateLimitError(f"{self.model_id.value}: {e}") from e
        except (openai.OpenAIError, ValueError) as e:
            raise ModelBackendError(f"{self.model_id.value}: {e}") from e
        return ModelResponse(text=text, model_id=self.model_id.value)


class AnthropicBackend(ModelBackend):
    """Claude models through ``llms.AnthropicClient``."""

    def __init__(self, model_id: ModelId, client):
        self.model_id = model_id
        self.client = client

    async def complete(self, request: ModelRequest) -> ModelResponse:
        try:
            text = await asyncio.to_thread(
                self.client.generate,
                request.prompt,
                system_prompt=request.system or None,
                temperature=request.temperature,
                max_tokens=request.max_output,
            )
        except anthropic.APITimeoutError as e:
            raise ModelTimeoutError(f"{self.model_id.value}: {e}") from e
        except anthropic.RateLimitError as e:
            raise ModelRateLimitError(f"{self.model_id.value}: {e}") from e
        except (anthropic.AnthropicError, ValueError) as e:
            raise ModelBackendError(f"{self.model_id.value}: {e}") from e
        return ModelResponse(text=text, model_id=self.model_id.value)


def build_backend(model_id: ModelId, settings: BackendConfig, timeout: float) -> ModelBackend:
    """Instantiate the provider client for one backend; keys come from the environment."""
    try:
        if settings.kind == "anthropic":
            client = AnthropicClient(
                model=settings.model_name,
                api_key_env=settings.api_key_env or "ANTHROPIC_API_KEY",
                base_url=settings.base_url,
                timeout=timeout,
            )
            return AnthropicBackend(model_id, client)

        client = OpenAICompatClient(
            model=settings.model_name,
            preset=settings.kind,
            base_url=settings.base_url,
            api_key_env=settings.api_key_env,
            timeout=timeout,
        )
        return OpenAICompatBackend(model_id, client)
    except ValueError as e:
        raise ModelBackendError(f"Cannot initialize backend {model_id.value}: {e}") from e


class BackendRegistry:
    """Lookup from ``ModelId`` to a lazily constructed backend."""

    def __init__(self, factories: Mapping[ModelId, Callable[[], ModelBackend]]):
        self._factories: Dict[ModelId, Callable[[], ModelBackend]] = dict(factories)
        self._instances: Dict[ModelId, ModelBackend] = {}

    @classmethod
    def from_config(
        cls, backends: Mapping[str, BackendConfig], timeout: float
    ) -> "BackendRegistry":
        factories = {}
        for name, settings in backends.items():
            model_id = ModelId.parse(name)
            factories[model_id] = (
                lambda m=model_id, s=settings: build_backend(m, s, timeout)
            )
        return cls(factories)

    def register(self, backend: ModelBackend) -> None:
        self._instances[backend.model_id] = backend
        self._factories[backend.model_id] = lambda b=backend: b

    def get(self, model_id: Union[str, ModelId]) -> ModelBackend:
        key = ModelId.parse(model_id)
        if key not in self._instances:
            if key not in self._factories:
                raise UnknownModelError(f"No backend configured for {key.value}")
            self._instances[key] = self._factories[key]()
            logger.info(f"Initialized backend {key.value}")
        return self._instances[key]


async def invoke(
    backend: ModelBackend,
    request: ModelRequest,
    policy: RetryConfig,
    label: Optional[str] = None,
) -> str:
    """Call ``backend`` with timeout and retry; returns the response text."""
    response = await call_with_retry(
        lambda: backend.complete(request),
        policy,
        label=label or f"{backend.model_id.value} call",
    )
    return response.text
