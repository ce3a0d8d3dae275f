from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

DEFAULT_SCHEMA = Path("schema/learning-sample.json")


def _load_schema(schema_path: Path) -> Dict[str, Any]:
    with schema_path.open(encoding="utf-8") as f:
        return json.load(f)


def extra_checks(obj: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    ai = (obj.get("ai_output") or {}).get("score")
    corrected = (obj.get("corrected_output") or {}).get("score")
    if isinstance(ai, int) and isinstance(corrected, int) and ai == corrected:
        errors.append(f"ai_output.score equals corrected_output.score ({ai})")
    return errors


def validate_learning_sample(obj: Dict[str, Any], schema_path: Path | None = None) -> List[str]:
    """Return a list of error messages; empty list means valid."""
    schema = _load_schema(schema_path or DEFAULT_SCHEMA)
    validator = Draft202012Validator(schema)

    errors: List[str] = [e.message for e in validator.iter_errors(obj)]
    errors.extend(extra_checks(obj))
    return errors
