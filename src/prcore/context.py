from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .cache import CacheStore, Stage
from .config import PipelineConfig, load_config
from .embeddings import EmbeddingProvider, build_provider
from .feedback import FeedbackStore
from .models import BackendRegistry

logger = logging.getLogger(__name__)

InflightKey = Tuple[str, Stage, str]


class RunContext:
    """Everything one pipeline run shares: config, stores, providers and the in-flight table.

    Components receive the context explicitly; nothing here is module-global.
    The in-flight table guarantees at most one running computation per
    ``(fingerprint, stage, variant)``; later callers await the same task.
    """

    def __init__(
        self,
        config: PipelineConfig,
        cache: Optional[CacheStore] = None,
        feedback: Optional[FeedbackStore] = None,
        registry: Optional[BackendRegistry] = None,
        embedder: Optional[EmbeddingProvider] = None,
    ):
        self.config = config
        self.cache = cache or CacheStore(Path(config.cache_dir))
        self.feedback = feedback or FeedbackStore(Path(config.feedback_path))
        self.registry = registry or BackendRegistry.from_config(
            config.backends, timeout=config.retry.timeout
        )
        self._embedder = embedder
        self._inflight: Dict[InflightKey, asyncio.Future] = {}

    @property
    def embedder(self) -> EmbeddingProvider:
        if self._embedder is None:
            self._embedder = build_provider(self.config.embedding)
        return self._embedder

    async def run_once(self, key: InflightKey, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``factory()`` unless the same key is already in flight; then join it."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _release(done: asyncio.Future, k: InflightKey = key) -> None:
                if self._inflight.get(k) is done:
                    del self._inflight[k]

            task.add_done_callback(_release)
        else:
            logger.debug(f"Joining in-flight {key[0]}/{key[1].value}/{key[2]}")
        # a cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    def inflight(self, fingerprint: Optional[str] = None) -> List[InflightKey]:
        return [k for k in self._inflight if fingerprint is None or k[0] == fingerprint]

    def cancel(self, fingerprint: str) -> int:
        """Cancel every in-flight computation for ``fingerprint``; returns how many."""
        cancelled = 0
        for key in self.inflight(fingerprint):
            if self._inflight[key].cancel():
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} in-flight task(s) for {fingerprint}")
        return cancelled


def build_context(config_path: Optional[Path] = None, **overrides: Any) -> RunContext:
    """Load configuration and assemble a RunContext; ``overrides`` go to RunContext."""
    return RunContext(load_config(config_path), **overrides)
