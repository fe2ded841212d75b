import base64
import html
import posixpath
import re

from .vfs import FileSystemError, VirtualFileSystem

_STYLESHEET_RE = re.compile(r"<link\b[^>]*?href=[\"']([^\"']+)[\"'][^>]*?>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script\b([^>]*?)src=[\"']([^\"']+)[\"']([^>]*)>\s*</script>", re.IGNORECASE)
_REMOTE_PREFIXES = ("http://", "https://", "//", "data:")


def _data_url(markup: str) -> str:
    encoded = base64.b64encode(markup.encode("utf-8")).decode("ascii")
    return f"data:text/html;base64,{encoded}"


def _error_page(message: str) -> str:
    return _data_url(
        "<!doctype html><html><body style=\"font-family:sans-serif;color:#b00\">"
        f"<h3>Preview failed</h3><pre>{html.escape(message)}</pre></body></html>"
    )


class PreviewBundler:
    """Inlines local stylesheets and scripts into the entry page."""

    def __init__(self, vfs: VirtualFileSystem):
        self.vfs = vfs

    def _resolve(self, base_dir: str, href: str) -> str:
        href = href.split("?", 1)[0].split("#", 1)[0]
        if href.startswith("/"):
            return posixpath.normpath(href.lstrip("/"))
        return posixpath.normpath(posixpath.join(base_dir, href)) if base_dir else posixpath.normpath(href)

    def _read_local(self, base_dir: str, href: str):
        if href.startswith(_REMOTE_PREFIXES):
            return None
        try:
            return self.vfs.read(self._resolve(base_dir, href))
        except FileSystemError:
            return None

    async def build(self, entry_point: str = "index.html") -> str:
        entry = (entry_point or "index.html").lstrip("/")
        try:
            page = self.vfs.read(entry)
        except FileSystemError as exc:
            return _error_page(f"Could not load {entry}: {exc}")
        base_dir = posixpath.dirname(entry)

        def inline_style(match: "re.Match[str]") -> str:
            tag = match.group(0)
            if "stylesheet" not in tag.lower():
                return tag
            css = self._read_local(base_dir, match.group(1))
            return tag if css is None else f"<style>\n{css}\n</style>"

        def inline_script(match: "re.Match[str]") -> str:
            source = self._read_local(base_dir, match.group(2))
            if source is None:
                return match.group(0)
            attrs = f"{match.group(1)} {match.group(3)}".strip()
            opening = f"<script {attrs}>" if attrs else "<script>"
            return f"{opening}\n{source}\n</script>"

        page = _STYLESHEET_RE.sub(inline_style, page)
        page = _SCRIPT_RE.sub(inline_script, page)
        return _data_url(page)
