"""
Configuration classes for the paper review pipeline.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class ChunkingConfig:
    """Character window used to split section text."""

    chunk_size: int = 1000
    overlap: int = 200

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.overlap < self.chunk_size:
            raise ValueError("overlap must satisfy 0 <= overlap < chunk_size")


@dataclass(frozen=True)
class RetrievalConfig:
    top_k: int = 5
    min_similarity: float = 0.25


@dataclass(frozen=True)
class RetryConfig:
    """Timeout and bounded exponential backoff for external calls."""

    max_attempts: int = 3
    timeout: float = 120.0
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "sentence-transformers"  # or "openai"
    model_name: str = "all-MiniLM-L6-v2"
    batch_size: int = 32


@dataclass(frozen=True)
class BackendConfig:
    """Connection settings for one language-model backend."""

    kind: str = "openai"  # openai-compatible preset name, or "anthropic"
    model_name: str = "gpt-4o"
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class ModelsConfig:
    review_model: str = "gpt-4o"
    scoring_model: str = "claude"
    assessment_model: str = "gpt-4o"
    qa_model: str = "gpt-4o"
    temperature: float = 0.0
    max_output: int = 2000


def _default_backends() -> Dict[str, BackendConfig]:
    return {
        "gpt-4o": BackendConfig(kind="openai", model_name="gpt-4o"),
        "qwen-plus": BackendConfig(kind="dashscope", model_name="qwen-plus"),
        "claude": BackendConfig(kind="anthropic", model_name="claude-3-5-sonnet-20241022"),
        "local": BackendConfig(kind="ollama", model_name="llama3.1:8b"),
    }


@dataclass
class PipelineConfig:
    """Main configuration for the paper review pipeline."""

    cache_dir: str = ".cache/paper_review"
    feedback_path: str = "outputs/feedback/feedback.jsonl"

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    backends: Dict[str, BackendConfig] = field(default_factory=_default_backends)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PipelineConfig":
        data = dict(data or {})
        sections = {
            "chunking": ChunkingConfig,
            "retrieval": RetrievalConfig,
            "retry": RetryConfig,
            "embedding": EmbeddingConfig,
            "models": ModelsConfig,
        }
        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            if name in data:
                kwargs[name] = _build(section_cls, data.pop(name) or {})

        backends = _default_backends()
        for model_id, raw in (data.pop("backends", None) or {}).items():
            backends[model_id] = _build(BackendConfig, raw or {})
        kwargs["backends"] = backends

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        kwargs.update(data)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build(section_cls, raw: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(
            f"Unknown keys for {section_cls.__name__}: {sorted(unknown)}"
        )
    return section_cls(**raw)


def load_config(config_path: Optional[Path] = None) -> PipelineConfig:
    """Load configuration from YAML file.

    Without an explicit path, ``config/default.yaml`` is used when present and
    built-in defaults otherwise.
    """
    if config_path is None:
        config_path = Path("config/default.yaml")
        if not config_path.exists():
            return PipelineConfig()

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        return PipelineConfig.from_dict(yaml.safe_load(f))
