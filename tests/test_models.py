import asyncio

import anthropic
import httpx
import openai
import pytest
from conftest import FAST_RETRY, ScriptedBackend

from prcore.config import BackendConfig, RetryConfig
from prcore.errors import (
    ModelBackendError,
    ModelRateLimitError,
    ModelTimeoutError,
    UnknownModelError,
)
from prcore.models import (
    AnthropicBackend,
    BackendRegistry,
    ModelId,
    ModelRequest,
    OpenAICompatBackend,
    invoke,
)

REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


class FakeClient:
    def __init__(self, result):
        self.result = result
        self.kwargs = None

    def generate(self, prompt, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def test_model_id_parse():
    assert ModelId.parse("claude") is ModelId.CLAUDE
    assert ModelId.parse(ModelId.LOCAL) is ModelId.LOCAL
    with pytest.raises(UnknownModelError, match="gpt-5"):
        ModelId.parse("gpt-5")


def test_registry_builds_lazily_and_once():
    built = []

    def factory():
        built.append(1)
        return ScriptedBackend(ModelId.LOCAL, ["hi"])

    registry = BackendRegistry({ModelId.LOCAL: factory})
    assert built == []
    first = registry.get("local")
    assert registry.get(ModelId.LOCAL) is first
    assert built == [1]


def test_registry_unknown_and_unconfigured():
    registry = BackendRegistry({})
    with pytest.raises(UnknownModelError):
        registry.get("mystery")
    with pytest.raises(UnknownModelError, match="No backend configured"):
        registry.get("claude")


def test_registry_from_config_rejects_unknown_names():
    with pytest.raises(UnknownModelError):
        BackendRegistry.from_config({"gpt-9": BackendConfig()}, timeout=1.0)


def test_openai_backend_passes_generation_settings():
    client = FakeClient("answer")
    backend = OpenAICompatBackend(ModelId.GPT4O, client)
    response = asyncio.run(
        backend.complete(ModelRequest("q", system="sys", temperature=0.3, max_output=50))
    )
    assert response.text == "answer"
    assert response.model_id == "gpt-4o"
    assert client.kwargs == {"system_prompt": "sys", "temperature": 0.3, "max_tokens": 50}


@pytest.mark.parametrize(
    "error, expected",
    [
        (openai.APITimeoutError(request=REQUEST), ModelTimeoutError),
        (
            openai.RateLimitError(
                "slow down", response=httpx.Response(429, request=REQUEST), body=None
            ),
            ModelRateLimitError,
        ),
        (ValueError("empty completion"), ModelBackendError),
    ],
)
def test_openai_backend_maps_errors(error, expected):
    backend = OpenAICompatBackend(ModelId.QWEN_PLUS, FakeClient(error))
    with pytest.raises(expected, match="qwen-plus"):
        asyncio.run(backend.complete(ModelRequest("q")))


def test_anthropic_backend_maps_timeout():
    backend = AnthropicBackend(ModelId.CLAUDE, FakeClient(anthropic.APITimeoutError(request=REQUEST)))
    with pytest.raises(ModelTimeoutError):
        asyncio.run(backend.complete(ModelRequest("q")))


def test_invoke_retries_transient_failures():
    backend = ScriptedBackend(
        ModelId.LOCAL, [ModelRateLimitError("429"), ModelTimeoutError("slow"), "done"]
    )
    assert asyncio.run(invoke(backend, ModelRequest("q"), FAST_RETRY)) == "done"
    assert backend.calls == 3


def test_invoke_does_not_retry_backend_errors():
    backend = ScriptedBackend(ModelId.LOCAL, [ModelBackendError("bad request"), "never"])
    with pytest.raises(ModelBackendError):
        asyncio.run(invoke(backend, ModelRequest("q"), FAST_RETRY))
    assert backend.calls == 1


def test_invoke_times_out_slow_calls():
    class SlowBackend(ScriptedBackend):
        async def complete(self, request):
            self.requests.append(request)
            await asyncio.sleep(1)

    backend = SlowBackend(ModelId.LOCAL, ["unused"])
    policy = RetryConfig(max_attempts=2, timeout=0.01, base_delay=0.0, max_delay=0.0, jitter=0.0)
    with pytest.raises(ModelTimeoutError, match="timed out"):
        asyncio.run(invoke(backend, ModelRequest("q"), policy))
    assert backend.calls == 2
