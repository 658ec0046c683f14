"""
Dotted-decimal task numbers ("1", "1.0", "2.3.1").

Numbers compare segment by segment as integers, so "1.2" < "1.10" < "2.0".
"""

import re
from typing import Iterable, List, Optional, Tuple, TypeVar

TASK_NUMBER_PATTERN = re.compile(r"[0-9]+(\.[0-9]+)*")

T = TypeVar("T")


def is_valid_task_number(value: str) -> bool:
    """Check a string against the dotted-decimal format."""
    return bool(TASK_NUMBER_PATTERN.fullmatch(value))


def task_number_key(number: str) -> Tuple[int, ...]:
    """
    Natural sort key for a task number.

    Malformed numbers never reach storage, but sorting must not explode on
    them: non-numeric segments sort after every numeric one.
    """
    key = []
    for segment in number.split("."):
        key.append(int(segment) if segment.isascii() and segment.isdigit() else 2**63)
    return tuple(key)


def segment_count(number: str) -> int:
    return len(number.split("."))


def sort_numbers(numbers: Iterable[str]) -> List[str]:
    return sorted(numbers, key=task_number_key)


def sort_by_number(items: Iterable[T], attr: str = "task_number") -> List[T]:
    """Sort objects carrying a task number attribute in natural order."""
    return sorted(items, key=lambda item: task_number_key(getattr(item, attr)))


def compare_numbers(a: str, b: str) -> int:
    """Three-way comparison: -1, 0 or 1."""
    ka, kb = task_number_key(a), task_number_key(b)
    return (ka > kb) - (ka < kb)


def lowest(numbers: Iterable[str]) -> Optional[str]:
    ordered = sort_numbers(numbers)
    return ordered[0] if ordered else None
