"""Pull JSON values out of free-form model output.

Models wrap JSON in prose, markdown fences, or emit several objects in one
reply. The scanner tracks bracket depth (ignoring brackets inside string
literals) and attempts a strict parse each time a top-level object or array
closes.
"""

import json
import re
from typing import Any, Dict, List, Optional

_RAW_NEWLINE_RE = re.compile(r"\r\n|\r|\n")
_CLOSERS = {"{": "}", "[": "]"}


def _parse_candidate(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        pass
    # Models often put literal newlines inside string values.
    return json.loads(_RAW_NEWLINE_RE.sub("\\\\n", raw))


def extract_json_candidates(text: str) -> List[Any]:
    """Return every well-formed top-level JSON object/array in text, in closing order."""
    candidates: List[Any] = []
    if not text:
        return candidates
    stack: List[str] = []
    start = -1
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            if stack:
                in_string = True
            continue
        if ch in _CLOSERS:
            if not stack:
                start = idx
            stack.append(_CLOSERS[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack and start != -1:
                try:
                    candidates.append(_parse_candidate(text[start : idx + 1]))
                except ValueError:
                    pass
                start = -1
    return candidates


def first_json_object(text: str) -> Optional[Dict[str, Any]]:
    for candidate in extract_json_candidates(text):
        if isinstance(candidate, dict):
            return candidate
    return None
