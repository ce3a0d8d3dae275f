from .openai_compat import (
    OpenAICompatClient,
    OpenAICompatConfig,
    PRESETS,
)
from .anthropic_client import (
    AnthropicClient,
    AnthropicConfig,
)

__all__ = [
    "OpenAICompatClient",
    "OpenAICompatConfig",
    "PRESETS",
    "AnthropicClient",
    "AnthropicConfig",
]
