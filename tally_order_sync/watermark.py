"""
Persistence for per-company sync watermarks.

A watermark is the highest optional-voucher MasterID already reported for a
company. Stores only hold watermarks; no voucher content is kept.
"""
from __future__ import annotations
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol
from loguru import logger

from .models import SyncWatermark


class WatermarkStore(Protocol):
    def load(self, company_key: str) -> SyncWatermark:
        ...

    def save(self, watermark: SyncWatermark) -> None:
        ...


class MemoryWatermarkStore:
    """In-process store; watermarks are lost on exit."""

    def __init__(self):
        self._data: dict[str, SyncWatermark] = {}

    def load(self, company_key: str) -> SyncWatermark:
        return self._data.get(company_key) or SyncWatermark(company_key=company_key)

    def save(self, watermark: SyncWatermark) -> None:
        self._data[watermark.company_key] = watermark


class JsonFileWatermarkStore:
    """
    Watermarks in one JSON file keyed by company.

    Writes go to a temporary file that replaces the original, so a crash
    mid-write leaves the previous watermarks intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_all(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable watermark file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self, company_key: str) -> SyncWatermark:
        raw = self._read_all().get(company_key)
        if not raw:
            return SyncWatermark(company_key=company_key)
        return SyncWatermark.model_validate({**raw, "company_key": company_key})

    def save(self, watermark: SyncWatermark) -> None:
        data = self._read_all()
        data[watermark.company_key] = watermark.model_dump(mode="json", exclude={"company_key"})

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".watermarks-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug(f"Saved watermark {watermark.company_key} -> {watermark.last_master_id}")
