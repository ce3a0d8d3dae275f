"""Core library for the paper review pipeline.

Modules cover normalization, chunking, embeddings and retrieval, grounded
QA, review generation, scoring, innovation assessment with human feedback,
the stage cache and orchestration.
"""

from .cache import CacheStore, Stage
from .config import PipelineConfig, load_config
from .context import RunContext, build_context
from .errors import ConversionError, PipelineError
from .hashing import fingerprint_text  # re-export for convenience
from .orchestrator import PaperPipeline

__all__ = [
    "CacheStore",
    "ConversionError",
    "PaperPipeline",
    "PipelineConfig",
    "PipelineError",
    "RunContext",
    "Stage",
    "build_context",
    "fingerprint_text",
    "load_config",
]
