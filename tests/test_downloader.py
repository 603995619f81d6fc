import httpx
import pytest

from site_mirror.downloader import Downloader, FetchError


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("site_mirror.downloader.time.sleep", lambda s: None)


def test_fetch_ok(config, site):
    site.add("https://example.com/a.txt", "hello", content_type="text/plain")
    dl = Downloader(config, site.transport)
    assert dl.fetch("https://example.com/a.txt") == b"hello"
    dl.close()


def test_client_error_not_retried(config, site):
    config.download.max_retries = 3
    dl = Downloader(config, site.transport)
    with pytest.raises(FetchError) as exc:
        dl.fetch("https://example.com/missing.png")
    assert "404" in str(exc.value)
    assert site.count("https://example.com/missing.png") == 1


def test_server_error_retried(config):
    config.download.max_retries = 3
    calls = []

    def handler(request):
        calls.append(request.url)
        if len(calls) < 2:
            return httpx.Response(503)
        return httpx.Response(200, content=b"ok")

    dl = Downloader(config, httpx.MockTransport(handler))
    assert dl.fetch("https://example.com/flaky") == b"ok"
    assert len(calls) == 2


def test_network_error_exhausts_retries(config):
    config.download.max_retries = 2
    calls = []

    def handler(request):
        calls.append(request.url)
        raise httpx.ConnectError("connection refused", request=request)

    dl = Downloader(config, httpx.MockTransport(handler))
    with pytest.raises(FetchError):
        dl.fetch("https://example.com/down")
    assert len(calls) == 2


def test_oversize_body_rejected(config, site):
    config.download.max_file_size = 10
    site.add("https://example.com/big.bin", b"x" * 100, content_type="application/octet-stream")
    dl = Downloader(config, site.transport)
    with pytest.raises(FetchError) as exc:
        dl.fetch("https://example.com/big.bin")
    assert "too large" in str(exc.value)


@pytest.mark.parametrize("charset,text", [
    ("windows-1252", "“q” café"),
    ("shift_jis", "日本語のページ"),
])
def test_fetch_text_uses_declared_charset(config, site, charset, text):
    site.add("https://example.com/page", text.encode(charset),
             content_type=f"text/html; charset={charset}")
    dl = Downloader(config, site.transport)
    assert dl.fetch_text("https://example.com/page") == text
    body = dl.fetch_body("https://example.com/page")
    assert body.encoding == charset
    assert body.content == text.encode(charset)


def test_fetch_text_defaults_to_utf8(config, site):
    site.add("https://example.com/plain", "naïve".encode("utf-8"), content_type="text/html")
    dl = Downloader(config, site.transport)
    assert dl.fetch_text("https://example.com/plain") == "naïve"
