"""Keyword index over workspace files.

Symbols come from regular expressions, not a parser, so results are a relevance
hint for the agents and never an exhaustive answer.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .vfs import EXCLUDED_DIRS, ChangeKind, VirtualFileSystem

SNIPPET_CHARS = 300
MAX_RESULTS = 10

SCRIPT_EXTENSIONS = {"js", "jsx", "ts", "tsx"}
PYTHON_EXTENSIONS = {"py"}
HTML_EXTENSIONS = {"html", "htm"}

_JS_FUNCTION_RE = re.compile(r"function\s+(\w+)")
_JS_VAR_RE = re.compile(r"(?:const|let|var)\s+(\w+)\s*=")
_CLASS_RE = re.compile(r"class\s+(\w+)")
_PY_DEF_RE = re.compile(r"def\s+(\w+)")
_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class IndexEntry:
    path: str
    symbols: List[str] = field(default_factory=list)
    summary: str = ""
    snippet: str = ""
    indexed_at: float = 0.0


def _extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def extract_symbols(path: str, content: str) -> Tuple[List[str], str]:
    ext = _extension(path)
    symbols: List[str] = []
    if ext in SCRIPT_EXTENSIONS:
        symbols += [f"Function: {m}" for m in _JS_FUNCTION_RE.findall(content)]
        symbols += [f"Var: {m}" for m in _JS_VAR_RE.findall(content)]
        symbols += [f"Class: {m}" for m in _CLASS_RE.findall(content)]
        if symbols:
            names = ", ".join(s.split(": ", 1)[1] for s in symbols[:3])
            summary = f"Contains {len(symbols)} definitions including {names}..."
        else:
            summary = "Script with no top-level definitions."
    elif ext in PYTHON_EXTENSIONS:
        symbols += [f"Function: {m}" for m in _PY_DEF_RE.findall(content)]
        symbols += [f"Class: {m}" for m in _CLASS_RE.findall(content)]
        summary = f"Python module with {len(symbols)} definitions."
    elif ext in HTML_EXTENSIONS:
        match = _TITLE_RE.search(content)
        title = _WHITESPACE_RE.sub(" ", match.group(1)).strip() if match else ""
        if title:
            symbols.append(f"Page Title: {title}")
            summary = f"HTML Page: {title}"
        else:
            summary = "HTML Document"
    else:
        summary = "File contains logic."
    return symbols, summary


def make_snippet(content: str) -> str:
    return _WHITESPACE_RE.sub(" ", content[:SNIPPET_CHARS]).strip()


class CodeIndex:
    def __init__(self, exclude: Sequence[str] = EXCLUDED_DIRS, max_results: int = MAX_RESULTS):
        self.exclude = set(exclude)
        self.max_results = max_results
        self._entries: Dict[str, IndexEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def get(self, path: str) -> Optional[IndexEntry]:
        return self._entries.get(path)

    def attach(self, vfs: VirtualFileSystem) -> Callable[[], None]:
        return vfs.subscribe(self.on_file_changed)

    def _ignored(self, path: str) -> bool:
        parts = path.split("/")
        return any(part in self.exclude for part in parts[:-1]) or any(part.startswith(".") for part in parts)

    def on_file_changed(self, kind: ChangeKind, path: str, content: Optional[str] = None) -> None:
        if kind == "delete":
            self.remove(path)
        elif content is not None and not self._ignored(path):
            self.index_file(path, content)

    def index_file(self, path: str, content: str) -> IndexEntry:
        symbols, summary = extract_symbols(path, content)
        entry = IndexEntry(
            path=path,
            symbols=symbols,
            summary=summary,
            snippet=make_snippet(content),
            indexed_at=time.time(),
        )
        # Re-indexing keeps the original insertion slot so tie order stays stable.
        self._entries[path] = entry
        return entry

    def remove(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for key in [k for k in self._entries if k == path or k.startswith(prefix)]:
            del self._entries[key]

    def search(self, query: str) -> List[str]:
        cleaned = (query or "").strip()
        if not cleaned:
            return []
        lowered = cleaned.lower()
        terms = lowered.split()
        scored: List[Tuple[int, IndexEntry, List[str]]] = []
        for entry in self._entries.values():
            score = 0
            reasons: List[str] = []
            if lowered in entry.path.lower():
                score += 10
                reasons.append("Filename match")
            for symbol in entry.symbols:
                label = symbol.lower()
                if any(term in label for term in terms):
                    score += 5
                    reasons.append(f"Symbol match: {symbol}")
            snippet = entry.snippet.lower()
            if any(term in snippet for term in terms):
                score += 1
                reasons.append("Content match")
            if score > 0:
                scored.append((score, entry, reasons))
        # sorted() is stable, so equal scores keep insertion order.
        scored = sorted(scored, key=lambda item: item[0], reverse=True)[: self.max_results]
        return [
            f"FILE: {entry.path} | RELEVANCE: [{', '.join(reasons[:2])}] {entry.summary}"
            for _, entry, reasons in scored
        ]

    def stats(self) -> Dict[str, int]:
        return {
            "files": len(self._entries),
            "symbols": sum(len(e.symbols) for e in self._entries.values()),
        }
