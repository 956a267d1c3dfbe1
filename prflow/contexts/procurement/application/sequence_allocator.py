from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Callable, Protocol

from prflow.db import is_unique_violation
from prflow.errors import SequenceExhaustedError
from prflow.observability import observe_sequence_conflict, observe_sequence_exhausted
from prflow.procurement.numbering import (
    extract_sequences,
    format_number,
    purchase_request_prefix,
    rfq_prefix,
    smallest_missing,
)


class NumberSource(Protocol):
    def list_numbers_with_prefix(self, db, prefix: str) -> list[str]: ...

    def number_exists(self, db, number: str) -> bool: ...


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class SequenceAllocator:
    """Gap-filling, human readable numbers with bounded optimistic retry.

    Each attempt takes the smallest free sequence for the prefix, re-checks it and,
    when a ``claim`` callback is given, runs the claim (normally the INSERT that
    stores the number) inside a savepoint. A number taken concurrently, found either
    by the re-check or by a unique violation during the claim, costs one attempt and
    a linear backoff before the next candidate.
    """

    def __init__(
        self,
        source: NumberSource,
        *,
        max_attempts: int = 5,
        backoff_ms: int = 100,
        sleep_fn: Callable[[float], None] = time.sleep,
        today_fn: Callable[[], date] = _utc_today,
    ) -> None:
        self.source = source
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_ms = max(0, int(backoff_ms))
        self._sleep = sleep_fn
        self._today = today_fn
        self._logger = logging.getLogger("prflow")

    def allocate(
        self,
        db,
        department_code: str | None,
        on_date: date | None = None,
        *,
        claim: Callable[[str], object] | None = None,
    ) -> str:
        prefix = purchase_request_prefix(department_code, on_date or self._today())
        return self.allocate_with_prefix(db, prefix, claim=claim)

    def allocate_rfq_number(self, db, on_date: date | None = None, *, claim: Callable[[str], object] | None = None) -> str:
        return self.allocate_with_prefix(db, rfq_prefix(on_date or self._today()), claim=claim)

    def allocate_with_prefix(self, db, prefix: str, *, claim: Callable[[str], object] | None = None) -> str:
        tried: set[int] = set()
        for attempt in range(1, self.max_attempts + 1):
            taken = extract_sequences(self.source.list_numbers_with_prefix(db, prefix), prefix)
            sequence = smallest_missing(taken | tried)
            tried.add(sequence)
            number = format_number(prefix, sequence)

            if not self.source.number_exists(db, number) and self._try_claim(db, number, claim):
                return number

            observe_sequence_conflict(1)
            self._logger.warning(
                "sequence_conflict",
                extra={"prefix": prefix, "candidate": number, "attempt": attempt, "max_attempts": self.max_attempts},
            )
            if attempt < self.max_attempts:
                self._sleep(attempt * self.backoff_ms / 1000.0)

        observe_sequence_exhausted()
        raise SequenceExhaustedError(
            details=f"no free number for {prefix} after {self.max_attempts} attempts",
            payload={"prefix": prefix, "attempts": self.max_attempts},
        )

    @staticmethod
    def _try_claim(db, number: str, claim: Callable[[str], object] | None) -> bool:
        if claim is None:
            return True
        try:
            with db.savepoint():
                claim(number)
        except Exception as exc:
            if is_unique_violation(exc):
                return False
            raise
        return True
