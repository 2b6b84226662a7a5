import pytest
import requests
import yt_dlp

from channel_relay.errors import AcquisitionError
from channel_relay.fetcher import (
    DEFAULT_CONFIRM_TOKEN,
    DRIVE_DOWNLOAD_URL,
    DriveFetcher,
    extract_confirm_token,
    get_fetcher,
    resolve_download_request,
)
from channel_relay.youtube import YtDlpFetcher

SHARE_LINK = "https://drive.google.com/file/d/1AbCdEfGhIjKlMnOp/view?usp=sharing"
INTERSTITIAL = (
    "<html><body><p>Google Drive can't scan this file for viruses.</p>"
    '<a href="/uc?export=download&amp;confirm=Xy9_z-1&amp;id=1AbCdEfGhIjKlMnOp">Download anyway</a>'
    "</body></html>"
)
NO_TOKEN_PAGE = "<html><body>Sorry, you can't view or download this file at this time.</body></html>"

class FakeResponse:
    def __init__(self, body=b"", content_type="application/octet-stream", status_code=200, fail_after=None):
        self.body = body.encode() if isinstance(body, str) else body
        self.headers = {"Content-Type": content_type}
        self.status_code = status_code
        self.fail_after = fail_after
        self.closed = False

    @property
    def text(self):
        return self.body.decode("utf-8")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), 4):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset by peer")
            yield self.body[i:i + 4]

    def close(self):
        self.closed = True

class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, stream=False, timeout=None):
        self.calls.append((url, dict(params or {})))
        return self.responses.pop(0)

    def close(self):
        self.closed = True

def fetcher_for(tmp_path, session):
    return DriveFetcher(storage_dir=tmp_path, session_factory=lambda: session, timeout=5, chunk_size=4)

def test_direct_binary_is_saved(tmp_path):
    session = FakeSession(FakeResponse(b"binary-video-bytes", content_type="video/mp4"))

    path = fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_1.mp4")

    assert path == tmp_path / "video_1_1.mp4"
    assert path.read_bytes() == b"binary-video-bytes"
    assert session.calls == [(DRIVE_DOWNLOAD_URL, {"export": "download", "id": "1AbCdEfGhIjKlMnOp"})]
    assert session.closed
    assert [p.name for p in tmp_path.iterdir()] == ["video_1_1.mp4"]

def test_interstitial_token_is_replayed_on_same_session(tmp_path):
    session = FakeSession(
        FakeResponse(INTERSTITIAL, content_type="text/html; charset=utf-8"),
        FakeResponse(b"the-real-file", content_type="application/octet-stream"),
    )

    path = fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_2.mp4")

    assert path.read_bytes() == b"the-real-file"
    assert len(session.calls) == 2
    assert session.calls[1][1] == {"export": "download", "id": "1AbCdEfGhIjKlMnOp", "confirm": "Xy9_z-1"}

def test_interstitial_without_token_falls_back_then_fails_cleanly(tmp_path):
    session = FakeSession(
        FakeResponse(NO_TOKEN_PAGE, content_type="text/html"),
        FakeResponse(NO_TOKEN_PAGE, content_type="text/html"),
    )

    with pytest.raises(AcquisitionError) as excinfo:
        fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_3.mp4")

    assert session.calls[1][1]["confirm"] == DEFAULT_CONFIRM_TOKEN
    assert "Sorry, you can't view or download this file" in str(excinfo.value)
    assert list(tmp_path.iterdir()) == []

def test_empty_download_is_a_failure(tmp_path):
    session = FakeSession(FakeResponse(b"", content_type="video/mp4"))

    with pytest.raises(AcquisitionError, match="empty"):
        fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_4.mp4")

    assert list(tmp_path.iterdir()) == []

def test_failure_mid_stream_leaves_no_partial_file(tmp_path):
    session = FakeSession(FakeResponse(b"0123456789abcdef", content_type="video/mp4", fail_after=8))

    with pytest.raises(AcquisitionError, match="connection reset"):
        fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_5.mp4")

    assert list(tmp_path.iterdir()) == []

def test_http_error_status(tmp_path):
    session = FakeSession(FakeResponse(b"", content_type="text/html", status_code=404))

    with pytest.raises(AcquisitionError, match="HTTP 404"):
        fetcher_for(tmp_path, session).acquire(SHARE_LINK, "video_1_6.mp4")

@pytest.mark.parametrize("reference, expected", [
    (SHARE_LINK, (DRIVE_DOWNLOAD_URL, {"export": "download", "id": "1AbCdEfGhIjKlMnOp"})),
    ("https://drive.google.com/open?id=1AbCdEfGhIjKlMnOp",
     (DRIVE_DOWNLOAD_URL, {"export": "download", "id": "1AbCdEfGhIjKlMnOp"})),
    ("1AbCdEfGhIjKlMnOp", (DRIVE_DOWNLOAD_URL, {"export": "download", "id": "1AbCdEfGhIjKlMnOp"})),
    ("https://cdn.example.com/clip.mp4", ("https://cdn.example.com/clip.mp4", {})),
])
def test_resolve_download_request(reference, expected):
    assert resolve_download_request(reference) == expected

@pytest.mark.parametrize("reference", ["", "   ", "not a link"])
def test_resolve_download_request_rejects_garbage(reference):
    with pytest.raises(AcquisitionError):
        resolve_download_request(reference)

def test_extract_confirm_token():
    assert extract_confirm_token(INTERSTITIAL) == "Xy9_z-1"
    assert extract_confirm_token(NO_TOKEN_PAGE) is None

def test_get_fetcher_selects_backend(tmp_path):
    assert isinstance(get_fetcher("drive", storage_dir=tmp_path), DriveFetcher)
    assert isinstance(get_fetcher("ytdlp", storage_dir=tmp_path), YtDlpFetcher)
    with pytest.raises(ValueError):
        get_fetcher("ftp")

class FakeYoutubeDL:
    payload = b"yt-dlp-bytes"
    error = None

    def __init__(self, opts):
        self.opts = opts

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def download(self, urls):
        if self.error is not None:
            raise self.error
        with open(self.opts["outtmpl"], "wb") as f:
            f.write(self.payload)
        return 0

def test_ytdlp_fetcher_renames_finished_download(tmp_path):
    fetcher = YtDlpFetcher(storage_dir=tmp_path, ydl_class=FakeYoutubeDL)

    path = fetcher.acquire("https://www.youtube.com/watch?v=abc123xyz00", "video_2_1.mp4")

    assert path.read_bytes() == b"yt-dlp-bytes"
    assert [p.name for p in tmp_path.iterdir()] == ["video_2_1.mp4"]

def test_ytdlp_fetcher_wraps_download_errors(tmp_path):
    class FailingYoutubeDL(FakeYoutubeDL):
        error = yt_dlp.utils.DownloadError("Video unavailable")

    fetcher = YtDlpFetcher(storage_dir=tmp_path, ydl_class=FailingYoutubeDL)

    with pytest.raises(AcquisitionError, match="Video unavailable"):
        fetcher.acquire("https://www.youtube.com/watch?v=abc123xyz00", "video_2_2.mp4")
    assert list(tmp_path.iterdir()) == []
