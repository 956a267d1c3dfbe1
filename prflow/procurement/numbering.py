from __future__ import annotations

import re
from datetime import date
from typing import Iterable, Set


DEFAULT_DEPARTMENT_CODE = "GENERAL"
SEQUENCE_WIDTH = 4

_DEPARTMENT_INVALID_CHARS = re.compile(r"[^A-Z0-9_-]")
_WHITESPACE = re.compile(r"\s+")


def normalize_department_code(value: str | None) -> str:
    code = _WHITESPACE.sub("", str(value or "").strip().upper())
    code = _DEPARTMENT_INVALID_CHARS.sub("", code)
    return code or DEFAULT_DEPARTMENT_CODE


def purchase_request_prefix(department_code: str | None, on_date: date) -> str:
    return f"{normalize_department_code(department_code)}-{on_date:%Y%m%d}-"


def rfq_prefix(on_date: date) -> str:
    return f"RFQ-{on_date:%Y}-"


def extract_sequences(numbers: Iterable[str], prefix: str) -> Set[int]:
    sequences: Set[int] = set()
    for number in numbers:
        raw = str(number or "")
        if not raw.startswith(prefix):
            continue
        tail = raw[len(prefix) :]
        if tail.isdigit():
            sequences.add(int(tail))
    return sequences


def smallest_missing(taken: Iterable[int]) -> int:
    """Smallest integer >= 1 not in ``taken``; reuses numbers freed by deletions."""
    used = {int(value) for value in taken if int(value) >= 1}
    candidate = 1
    while candidate in used:
        candidate += 1
    return candidate


def format_number(prefix: str, sequence: int) -> str:
    return f"{prefix}{int(sequence):0{SEQUENCE_WIDTH}d}"
