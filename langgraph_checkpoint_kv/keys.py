"""Composite key rules for write records in a sorted key-value store.

Keys are flat strings made of components joined by ``SEPARATOR``::

    partition_key := thread_id SEP checkpoint_id SEP checkpoint_ns
    sort_key      := task_id SEP idx

``thread_id`` leads the partition key so every write of a thread falls in
one contiguous key range (see ``thread_key_range``).
"""
import re
from typing import List, Optional, Sequence, Tuple

from langgraph_checkpoint_kv.errors import InvalidIdentifierError, MalformedKeyError

SEPARATOR = ":::"

PARTITION_KEY_FIELDS = ("thread_id", "checkpoint_id", "checkpoint_ns")
SORT_KEY_FIELDS = ("task_id", "idx")

_IDX_PATTERN = re.compile(r"(?:0|[1-9][0-9]*)\Z")


def separator() -> str:
    return SEPARATOR


def join_key(components: Sequence[Tuple[str, str]]) -> str:
    """Join ``(name, value)`` pairs into a key that splits back unchanged.

    Raises InvalidIdentifierError when a value is not a string, contains the
    separator, or sits against it in a way that shifts the split point
    (e.g. ``"a:"`` followed by ``":b"``).
    """
    values = []
    for name, value in components:
        if not isinstance(value, str):
            raise InvalidIdentifierError(
                f"{name} must be a string, got {type(value).__name__}"
            )
        if SEPARATOR in value:
            raise InvalidIdentifierError(
                f"{name} must not contain {SEPARATOR!r}: {value!r}"
            )
        values.append(value)
    key = SEPARATOR.join(values)
    if key.split(SEPARATOR) != values:
        names = ", ".join(name for name, _ in components)
        raise InvalidIdentifierError(
            f"{names} cannot be joined unambiguously with {SEPARATOR!r}: {values!r}"
        )
    return key


def split_key(key: str, arity: int) -> List[str]:
    """Split ``key`` into exactly ``arity`` components."""
    if not isinstance(key, str):
        raise MalformedKeyError(
            f"Expected a string key, got {type(key).__name__}", key=None
        )
    parts = key.split(SEPARATOR)
    if len(parts) != arity:
        raise MalformedKeyError(
            f"Expected {arity} components separated by {SEPARATOR!r}, "
            f"found {len(parts)} in {key!r}",
            key=key,
        )
    return parts


def parse_idx(text: str, key: Optional[str] = None) -> int:
    # Only the form produced by str(idx) is accepted so keys stay canonical.
    if not _IDX_PATTERN.match(text):
        raise MalformedKeyError(
            f"Write index must be a non-negative decimal integer, got {text!r}",
            key=key if key is not None else text,
        )
    return int(text)


def partition_key_for(thread_id: str, checkpoint_id: str, checkpoint_ns: str) -> str:
    return join_key(
        list(zip(PARTITION_KEY_FIELDS, (thread_id, checkpoint_id, checkpoint_ns)))
    )


def sort_key_for(task_id: str, idx: int) -> str:
    return join_key([("task_id", task_id), ("idx", str(idx))])


def split_partition_key(partition_key: str) -> Tuple[str, str, str]:
    thread_id, checkpoint_id, checkpoint_ns = split_key(
        partition_key, len(PARTITION_KEY_FIELDS)
    )
    return thread_id, checkpoint_id, checkpoint_ns


def split_sort_key(sort_key: str) -> Tuple[str, int]:
    task_id, idx = split_key(sort_key, len(SORT_KEY_FIELDS))
    return task_id, parse_idx(idx, key=sort_key)


def thread_key_range(thread_id: str) -> Tuple[str, str]:
    """Return ``(lower, upper)`` bounding every partition key of a thread.

    A partition key belongs to ``thread_id`` iff ``lower <= key < upper``.
    """
    lower = join_key([("thread_id", thread_id), ("checkpoint_id", "")])
    upper = lower[:-1] + chr(ord(lower[-1]) + 1)
    return lower, upper
