import json
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel

DEFAULT_CONTEXT_CHARS = 20000

T = TypeVar("T")


def estimate_size(message: Any) -> int:
    """Serialized length of a message, used as a cheap stand-in for token count."""
    if isinstance(message, BaseModel):
        return len(message.model_dump_json())
    return len(json.dumps(message, ensure_ascii=False, default=str))


def prune_messages(
    messages: Sequence[T],
    max_chars: int = DEFAULT_CONTEXT_CHARS,
    size_of: Optional[Callable[[Any], int]] = None,
) -> List[T]:
    """Keep the first and last message plus as many recent interior messages as fit."""
    items = list(messages)
    if len(items) <= 2:
        return items
    measure = size_of or estimate_size
    anchor, last = items[0], items[-1]
    total = measure(anchor) + measure(last)
    kept: List[T] = []
    for message in reversed(items[1:-1]):
        size = measure(message)
        if total + size > max_chars:
            break
        total += size
        kept.append(message)
    kept.reverse()
    return [anchor, *kept, last]


def limit_history(messages: Sequence[Any], depth: int) -> List[Any]:
    """Drop system and blank messages, then keep the most recent `depth`."""
    visible = [
        m
        for m in messages
        if getattr(m, "role", None) != "system" and (getattr(m, "content", "") or getattr(m, "images", None))
    ]
    if depth <= 0:
        return []
    return visible[-depth:]
