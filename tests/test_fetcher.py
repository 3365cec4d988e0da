import time
from pathlib import Path

import httpx
import pytest

from hapticsync.config import PipelineConfig
from hapticsync.errors import FetchError, OperationCancelled
from hapticsync.services.cancellation import CancellationToken
from hapticsync.services.fetcher import LocalMediaSource, MediaFetcher, is_likely_video_url

URL = "https://cdn.example.com/clip.mp4"
PAYLOAD = b"\x00\x01" * 100_000


def make_fetcher(tmp_path, handler, **overrides):
    options = {"download_retry_delay_sec": 0, **overrides}
    config = PipelineConfig(temp_dir=str(tmp_path), **options)
    return MediaFetcher(config, client=httpx.Client(transport=httpx.MockTransport(handler)))


def leftovers(tmp_path):
    return list(tmp_path.glob("haptic_media_*"))


def test_download_succeeds_on_third_attempt(tmp_path):
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, content=PAYLOAD)

    fetcher = make_fetcher(tmp_path, handler)
    result = fetcher.download(URL)

    assert calls["count"] == 3
    assert result.byte_length == len(PAYLOAD)
    assert result.temporary is True
    with open(result.path, "rb") as handle:
        assert handle.read() == PAYLOAD
    assert leftovers(tmp_path) == [Path(result.path)]


def test_download_gives_up_after_max_attempts(tmp_path):
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(500)

    fetcher = make_fetcher(tmp_path, handler)
    with pytest.raises(FetchError) as excinfo:
        fetcher.download(URL)

    assert calls["count"] == 3
    assert "after 3 attempts" in str(excinfo.value)
    assert isinstance(excinfo.value.last_error, httpx.HTTPStatusError)
    assert excinfo.value.__cause__ is excinfo.value.last_error
    assert leftovers(tmp_path) == []


def test_retry_delay_grows_with_each_attempt(tmp_path, monkeypatch):
    delays = []
    monkeypatch.setattr(CancellationToken, "sleep", lambda self, seconds: delays.append(seconds))

    def handler(request):
        return httpx.Response(502)

    fetcher = make_fetcher(tmp_path, handler, download_retry_delay_sec=2.0)
    with pytest.raises(FetchError):
        fetcher.download(URL)

    assert delays == [2.0, 4.0]


def test_slow_transfer_hits_overall_deadline(tmp_path):
    def trickle():
        for _ in range(20):
            time.sleep(0.1)
            yield b"x"

    def handler(request):
        return httpx.Response(200, content=trickle())

    fetcher = make_fetcher(tmp_path, handler, download_timeout_sec=0.3, download_max_attempts=1)
    started = time.monotonic()
    with pytest.raises(FetchError) as excinfo:
        fetcher.download(URL)

    assert time.monotonic() - started < 1.5
    assert isinstance(excinfo.value.last_error, httpx.TimeoutException)
    assert leftovers(tmp_path) == []


def test_transport_errors_are_retried(tmp_path):
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"ok")

    fetcher = make_fetcher(tmp_path, handler)
    assert fetcher.download(URL).byte_length == 2
    assert calls["count"] == 2


def test_cancelled_before_start(tmp_path):
    def handler(request):
        raise AssertionError("no request expected")

    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        make_fetcher(tmp_path, handler).download(URL, token)
    assert leftovers(tmp_path) == []


def test_cancelled_mid_stream_is_not_retried(tmp_path):
    token = CancellationToken()
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        token.cancel()
        return httpx.Response(200, content=PAYLOAD)

    with pytest.raises(OperationCancelled):
        make_fetcher(tmp_path, handler).download(URL, token)
    assert calls["count"] == 1
    assert leftovers(tmp_path) == []


def test_progress_ends_with_final_report(tmp_path):
    reports = []

    def handler(request):
        return httpx.Response(200, content=PAYLOAD)

    make_fetcher(tmp_path, handler).download(URL, on_progress=reports.append)

    assert reports
    assert reports[-1].bytes_downloaded == len(PAYLOAD)
    assert reports[-1].total_bytes == len(PAYLOAD)
    assert reports[-1].percent_complete == pytest.approx(100.0)


def test_sends_browser_user_agent(tmp_path):
    seen = {}

    def handler(request):
        seen["ua"] = request.headers.get("User-Agent")
        return httpx.Response(200, content=b"x")

    config = PipelineConfig(temp_dir=str(tmp_path), user_agent="Mozilla/5.0 test")
    client = httpx.Client(transport=httpx.MockTransport(handler), headers={"User-Agent": config.user_agent})
    MediaFetcher(config, client=client).download(URL)
    assert seen["ua"] == "Mozilla/5.0 test"


def test_local_media_source(tmp_path):
    media = tmp_path / "song.wav"
    media.write_bytes(b"RIFF")
    reports = []

    result = LocalMediaSource().download(str(media), on_progress=reports.append)

    assert result.path == str(media)
    assert result.temporary is False
    assert reports[-1].percent_complete == pytest.approx(100.0)
    with pytest.raises(FetchError):
        LocalMediaSource().download(str(tmp_path / "missing.wav"))


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com/videos/clip.MP4", True),
        ("https://example.com/watch/clip.webm?sig=1", True),
        ("https://cdn.host.net/abc", True),
        ("https://host.net/media/123", True),
        ("https://example.com/index.html", False),
        ("", False),
        (None, False),
    ],
)
def test_is_likely_video_url(url, expected):
    assert is_likely_video_url(url) is expected
