"""Boundary to the PDF-to-structured-text converter.

The converter itself is an external service; this module only reads what it
produces (JSON with sections, or Markdown) and, for convenience, fetches the
Markdown for a paper URL from the MinerU API.
"""

from __future__ import annotations

import io
import json
import logging
import os
import time
import zipfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from .errors import ConversionError

logger = logging.getLogger(__name__)


def load_converter_output(path: Union[str, Path]) -> Union[str, Dict[str, Any]]:
    """Read converter JSON (``.json``) or Markdown (anything else) from disk."""
    path = Path(path)
    if not path.exists():
        raise ConversionError(f"Converter output not found: {path}")
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        raise ConversionError(f"Converter output is empty: {path}")

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConversionError(f"Malformed converter JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConversionError(f"Converter JSON in {path} is not an object")
        return data
    return text


class MinerUConverter:
    """Client for the MinerU extraction API; returns the paper as Markdown."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://mineru.net/api/v4",
        poll_interval: float = 10.0,
        max_wait_time: float = 3600.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.getenv("MINERU_API_KEY")
        if not self.api_key:
            raise ValueError("MINERU_API_KEY not found in environment variables")
        self.base_url = base_url
        self.poll_interval = poll_interval
        self.max_wait_time = max_wait_time
        self.session = session or requests.Session()
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def convert_url(self, url: str, **kwargs) -> str:
        """Parse the paper at ``url`` and return its Markdown.

        Args:
            url: URL of the paper PDF
            **kwargs: Extraction options (is_ocr, enable_formula, enable_table, language)
        """
        logger.info(f"Starting to parse paper from URL: {url}")
        try:
            task_id = self._create_task(url, **kwargs)
            logger.info(f"Created parsing task with ID: {task_id}")
            result = self._wait_for_task(task_id)
            markdown = self._download_markdown(result["full_zip_url"])
        except requests.RequestException as e:
            raise ConversionError(f"MinerU request failed: {e}") from e
        except zipfile.BadZipFile as e:
            raise ConversionError(f"MinerU result archive is corrupt: {e}") from e

        if not markdown.strip():
            raise ConversionError(f"MinerU returned empty Markdown for {url}")
        return markdown

    def _api(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self.session.request(
            method, f"{self.base_url}{path}", headers=self.headers, **kwargs
        )
        response.raise_for_status()
        result = response.json()
        if result.get("code") != 0:
            raise ConversionError(f"MinerU error on {path}: {result.get('msg')}")
        return result["data"]

    def _create_task(self, url: str, **kwargs) -> str:
        data = {
            "url": url,
            "is_ocr": kwargs.get("is_ocr", True),
            "enable_formula": kwargs.get("enable_formula", True),
            "enable_table": kwargs.get("enable_table", True),
            "language": kwargs.get("language", "auto"),
            "model_version": kwargs.get("model_version", "v2"),
        }
        return self._api("POST", "/extract/task", json=data)["task_id"]

    def _wait_for_task(self, task_id: str) -> Dict[str, Any]:
        start_time = time.time()
        while time.time() - start_time < self.max_wait_time:
            result = self._api("GET", f"/extract/task/{task_id}")
            if result["state"] == "done":
                return result
            if result["state"] == "failed":
                raise ConversionError(f"Task failed: {result.get('err_msg', 'Unknown error')}")

            logger.info(f"Task {task_id} status: {result['state']}")
            if result["state"] == "running" and "extract_progress" in result:
                progress = result["extract_progress"]
                logger.info(
                    f"Progress: {progress['extracted_pages']}/{progress['total_pages']} pages"
                )
            time.sleep(self.poll_interval)

        raise ConversionError(
            f"Task {task_id} did not complete within {self.max_wait_time} seconds"
        )

    def _download_markdown(self, zip_url: str) -> str:
        response = self.session.get(zip_url)
        response.raise_for_status()
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            names = sorted(n for n in archive.namelist() if n.endswith(".md"))
            if not names:
                raise ConversionError("No markdown file found in extracted results")
            return archive.read(names[0]).decode("utf-8")
