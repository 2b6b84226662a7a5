"""Source video acquisition from Google Drive share links.

Drive serves small public files directly. Large files (or ones its scanner
flags) come back as an HTML interstitial carrying a one-time ``confirm``
token, which must be replayed together with the cookies from the first
request. ``DriveFetcher`` handles exactly that: one plain request, and at
most one confirmation retry.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import requests

from .config import config
from .errors import AcquisitionError

logger = logging.getLogger(__name__)

DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc"
CONFIRM_PATTERN = re.compile(r"confirm=([0-9A-Za-z_-]+)")
DEFAULT_CONFIRM_TOKEN = "t"
PREVIEW_LENGTH = 200

_FILE_PATH_PATTERN = re.compile(r"/file/d/([^/?#]+)")
_BARE_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]{10,}$")

def resolve_download_request(source_reference: str) -> Tuple[str, dict]:
    """Turn a share link or file id into a canonical ``(url, params)`` pair."""
    reference = (source_reference or "").strip()
    if not reference:
        raise AcquisitionError("No source reference given")

    match = _FILE_PATH_PATTERN.search(reference)
    if match:
        return DRIVE_DOWNLOAD_URL, {"export": "download", "id": match.group(1)}

    parsed = urlparse(reference)
    if parsed.scheme in ("http", "https"):
        if parsed.netloc.endswith("drive.google.com"):
            file_id = parse_qs(parsed.query).get("id", [None])[0]
            if file_id:
                return DRIVE_DOWNLOAD_URL, {"export": "download", "id": file_id}
        return reference, {}

    if _BARE_ID_PATTERN.match(reference):
        return DRIVE_DOWNLOAD_URL, {"export": "download", "id": reference}

    raise AcquisitionError(f"Unsupported source reference: {reference[:80]}")

def is_textual(response) -> bool:
    content_type = response.headers.get("Content-Type", "") or ""
    return content_type.lower().startswith("text/")

def extract_confirm_token(body: str) -> Optional[str]:
    match = CONFIRM_PATTERN.search(body or "")
    return match.group(1) if match else None

def content_preview(body: str, length: int = PREVIEW_LENGTH) -> str:
    return " ".join((body or "").split())[:length]

def temporary_path(destination: Path) -> Path:
    """A sibling file name unique to one acquisition attempt."""
    return destination.with_name(f"{destination.name}.{uuid.uuid4().hex}.part")

class DriveFetcher:
    """Downloads public Drive files, resolving the virus-scan interstitial."""

    name = "drive"

    def __init__(self, storage_dir: Path = None,
                 session_factory: Callable[[], requests.Session] = requests.Session,
                 timeout: int = None, chunk_size: int = None):
        self.storage_dir = Path(storage_dir or config.STORAGE_DIR)
        self.session_factory = session_factory
        self.timeout = timeout or config.DOWNLOAD_TIMEOUT
        self.chunk_size = chunk_size or config.DOWNLOAD_CHUNK_SIZE

    def acquire(self, source_reference: str, destination_name: str) -> Path:
        """Download ``source_reference`` into the storage directory."""
        url, params = resolve_download_request(source_reference)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        destination = self.storage_dir / destination_name
        partial = temporary_path(destination)

        logger.info(f"Downloading {url} -> {destination.name}")
        # The session is this attempt's cookie jar.
        session = self.session_factory()
        try:
            response = self._get(session, url, params)
            if is_textual(response):
                body = response.text
                response.close()
                token = extract_confirm_token(body)
                if token is None:
                    logger.warning("Interstitial without confirm token, retrying with default token")
                    token = DEFAULT_CONFIRM_TOKEN
                else:
                    logger.info(f"Interstitial detected, retrying with confirm token {token}")
                response = self._get(session, url, {**params, "confirm": token})
                if is_textual(response):
                    preview = content_preview(response.text)
                    response.close()
                    raise AcquisitionError(
                        "File is not directly downloadable; make sure it is public. "
                        f"Response preview: {preview}"
                    )

            self._write(response, partial)
            if partial.stat().st_size == 0:
                raise AcquisitionError("Downloaded file is empty")
            partial.replace(destination)
        except AcquisitionError:
            partial.unlink(missing_ok=True)
            raise
        except (requests.RequestException, OSError) as e:
            partial.unlink(missing_ok=True)
            raise AcquisitionError(f"Download failed: {e}") from e
        except Exception:
            partial.unlink(missing_ok=True)
            raise
        finally:
            session.close()

        logger.info(f"Download complete: {destination} ({destination.stat().st_size} bytes)")
        return destination

    def _get(self, session: requests.Session, url: str, params: dict):
        response = session.get(url, params=params, stream=True, timeout=self.timeout)
        if response.status_code >= 400:
            response.close()
            raise AcquisitionError(f"Download failed: HTTP {response.status_code}")
        return response

    def _write(self, response, partial: Path):
        try:
            with open(partial, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
        finally:
            response.close()

def get_fetcher(backend: str = None, **kwargs):
    """Build the fetcher named by ``backend`` (default: ``FETCHER_BACKEND``)."""
    backend = backend or config.FETCHER_BACKEND
    if backend == "drive":
        return DriveFetcher(**kwargs)
    if backend == "ytdlp":
        from .youtube import YtDlpFetcher
        return YtDlpFetcher(**kwargs)
    raise ValueError(f"Unknown fetcher backend: {backend}")
