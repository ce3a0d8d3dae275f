from __future__ import annotations

import hashlib
import json
from typing import Any


def fingerprint_text(text: str) -> str:
    """Compute a paper fingerprint as pp_ + blake2s(text)[:16] hex.

    Parameters
    ----------
    text: str
        Normalized paper content (title, abstract and section texts).

    Returns
    -------
    str
        Identifier of the form pp_XXXXXXXXXXXXXXXX
    """
    digest = hashlib.blake2s(text.encode("utf-8")).hexdigest()[:16]
    return f"pp_{digest}"


def digest_inputs(inputs: Any) -> str:
    """Stable short digest of a JSON-serializable stage input description."""
    payload = json.dumps(inputs, sort_keys=True, ensure_ascii=False)
    return hashlib.blake2s(payload.encode("utf-8")).hexdigest()[:12]
