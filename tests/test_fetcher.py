import pytest
import respx
from httpx import Response

from codestudio.fetcher import UrlFetcher


@pytest.mark.asyncio
async def test_fetch_returns_text_and_truncates():
    fetcher = UrlFetcher(max_chars=5)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get("https://docs.test/page").mock(return_value=Response(200, text="abcdefgh"))
            result = await fetcher.fetch("https://docs.test/page")
        assert result == {"content": "abcde", "truncated": True}
    finally:
        await fetcher.close()


@pytest.mark.asyncio
async def test_fetch_reports_http_errors():
    fetcher = UrlFetcher()
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get("https://docs.test/missing").mock(return_value=Response(404))
            result = await fetcher.fetch("https://docs.test/missing")
        assert result == {"error": "HTTP 404 fetching https://docs.test/missing"}
    finally:
        await fetcher.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["file:///etc/passwd", "not a url", ""])
async def test_fetch_rejects_non_http_urls(url):
    fetcher = UrlFetcher()
    try:
        result = await fetcher.fetch(url)
        assert result["error"].startswith("Unsupported URL")
    finally:
        await fetcher.close()
