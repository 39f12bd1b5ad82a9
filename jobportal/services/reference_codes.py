from __future__ import annotations

from datetime import datetime
import logging
import time
from typing import Callable, Protocol

logger = logging.getLogger("jp.reference")

REFERENCE_PREFIX = "REF"
TEMPORARY_PREFIX = "TEMP-"


class ReferenceSequenceStore(Protocol):
    async def next_reference_number(self, year: int) -> int: ...


def _epoch_millis(now: datetime | None = None) -> int:
    if now is None:
        return int(time.time() * 1000)
    return int(now.timestamp() * 1000)


def format_reference_code(year: int, number: int) -> str:
    return f"{REFERENCE_PREFIX}-{year}-{number:05d}"


def fallback_reference_code(now: datetime | None = None) -> str:
    """REF-<year>-<3 digits>: the first three of the last six digits of the epoch-ms timestamp."""
    current = now or datetime.utcnow()
    stamp = str(_epoch_millis(now))[-6:]
    return f"{REFERENCE_PREFIX}-{current.year}-{stamp[:3]}"


def temporary_reference_code(now: datetime | None = None) -> str:
    return f"{TEMPORARY_PREFIX}{_epoch_millis(now)}"


def is_temporary(code: str | None) -> bool:
    return not code or code.startswith(TEMPORARY_PREFIX)


class ReferenceCodeGenerator:
    def __init__(self, store: ReferenceSequenceStore, *, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._store = store
        self._clock = clock

    async def generate(self) -> str:
        now = self._clock()
        try:
            number = await self._store.next_reference_number(now.year)
        except Exception as exc:  # noqa: BLE001
            code = fallback_reference_code(now)
            logger.warning("reference_code_fallback", extra={"error": str(exc), "reference_code": code})
            return code
        return format_reference_code(now.year, number)
