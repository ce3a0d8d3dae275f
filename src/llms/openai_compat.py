import os
import openai
from typing import Optional, Dict, List
from dataclasses import dataclass


@dataclass
class OpenAICompatConfig:
    """Configuration for an OpenAI-compatible chat/embeddings endpoint."""

    api_key: str
    base_url: Optional[str] = None
    default_model: str = "gpt-4o"
    max_tokens: int = 2000
    temperature: float = 0.0
    timeout: float = 120.0


# preset name -> (api key env var, base url, default model)
PRESETS: Dict[str, tuple] = {
    "openai": ("OPENAI_API_KEY", None, "gpt-4o"),
    "dashscope": (
        "DASHSCOPE_API_KEY",
        "https://dashscope.aliyuncs.com/compatible-mode/v1",
        "qwen-plus",
    ),
    "openrouter": (
        "OPENROUTER_API_KEY",
        "https://openrouter.ai/api/v1",
        "anthropic/claude-3.5-sonnet",
    ),
    # Ollama ignores the key but the SDK requires one
    "ollama": (None, "http://localhost:11434/v1", "llama3.1:8b"),
}


class OpenAICompatClient:
    """Client for OpenAI, DashScope (Qwen), OpenRouter or a local Ollama server."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[OpenAICompatConfig] = None,
        preset: str = "openai",
        base_url: Optional[str] = None,
        api_key_env: Optional[str] = None,
        timeout: float = 120.0,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key (falls back to the preset's environment variable)
            model: Model to use (defaults to the preset's model)
            config: Complete configuration; other arguments are ignored
            preset: One of PRESETS
            base_url: Override the preset's base URL
            api_key_env: Override the preset's API key environment variable
            timeout: Per-request timeout in seconds
        """
        if config:
            self.config = config
        else:
            if preset not in PRESETS:
                raise ValueError(f"Unknown preset: {preset}")
            env_name, preset_url, preset_model = PRESETS[preset]
            env_name = api_key_env or env_name
            if env_name:
                api_key = api_key or os.getenv(env_name)
                if not api_key:
                    raise ValueError(
                        f"{env_name} not found in environment variables or parameters"
                    )
            else:
                api_key = api_key or os.getenv("OLLAMA_API_KEY", "ollama")
                base_url = base_url or os.getenv("OLLAMA_BASE_URL")

            self.config = OpenAICompatConfig(
                api_key=api_key,
                base_url=base_url or preset_url,
                default_model=model or preset_model,
                timeout=timeout,
            )

        self.client = openai.OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> str:
        """Generate text for a single user prompt.

        SDK exceptions (timeouts, rate limits, API errors) propagate to the
        caller unchanged.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            model: Override the configured model

        Returns:
            Generated text response
        """
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = self.client.chat.completions.create(
            model=model or self.config.default_model,
            messages=messages,
            temperature=self.config.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.config.max_tokens,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("Empty response from model")
        return content.strip()

    def embed(self, texts: List[str], model: str) -> List[List[float]]:
        """Embed a batch of texts with the embeddings endpoint."""
        response = self.client.embeddings.create(model=model, input=texts)
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]
