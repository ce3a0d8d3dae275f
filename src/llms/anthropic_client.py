import os
import anthropic
from typing import Optional
from dataclasses import dataclass


@dataclass
class AnthropicConfig:
    """Configuration for the Anthropic Messages API client."""

    api_key: str
    base_url: Optional[str] = None
    default_model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 1000
    temperature: float = 0.0
    timeout: float = 60.0


class AnthropicClient:
    """Client for Claude models via the native SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[AnthropicConfig] = None,
        api_key_env: str = "ANTHROPIC_API_KEY",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        if config:
            self.config = config
        else:
            api_key = api_key or os.getenv(api_key_env)
            if not api_key:
                raise ValueError(f"{api_key_env} environment variable not set")
            self.config = AnthropicConfig(
                api_key=api_key,
                base_url=base_url or os.getenv("ANTHROPIC_BASE_URL"),
                default_model=model or "claude-3-5-sonnet-20241022",
                timeout=timeout,
            )

        self.client = anthropic.Anthropic(
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
        """Generate text for a single user prompt; SDK exceptions propagate."""
        kwargs = {}
        if system_prompt:
            kwargs["system"] = system_prompt
        response = self.client.messages.create(
            model=model or self.config.default_model,
            max_tokens=max_tokens or self.config.max_tokens,
            temperature=self.config.temperature if temperature is None else temperature,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )
        content = response.content[0].text if response.content else ""
        if not content:
            raise ValueError("Empty response from model")
        return content.strip()
