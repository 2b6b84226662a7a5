"""yt-dlp backed acquisition, the alternate fetcher."""

import logging
from pathlib import Path

import yt_dlp

from .config import config
from .errors import AcquisitionError
from .fetcher import temporary_path

logger = logging.getLogger(__name__)

class YtDlpFetcher:
    """Downloads any source yt-dlp understands into the storage directory."""

    name = "ytdlp"

    def __init__(self, storage_dir: Path = None, ydl_class=None):
        self.storage_dir = Path(storage_dir or config.STORAGE_DIR)
        self.ydl_class = ydl_class or yt_dlp.YoutubeDL
        self.ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'noplaylist': True,
            'format': 'best[ext=mp4]/best',
            'nopart': True,
            'overwrites': True,
        }

    def acquire(self, source_reference: str, destination_name: str) -> Path:
        """Download ``source_reference`` and store it as ``destination_name``."""
        reference = (source_reference or "").strip()
        if not reference:
            raise AcquisitionError("No source reference given")

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        destination = self.storage_dir / destination_name
        partial = temporary_path(destination)
        opts = {**self.ydl_opts, 'outtmpl': str(partial)}

        logger.info(f"Downloading with yt-dlp: {reference} -> {destination.name}")
        try:
            with self.ydl_class(opts) as ydl:
                ydl.download([reference])
            if not partial.exists() or partial.stat().st_size == 0:
                raise AcquisitionError("Downloaded file is empty")
            partial.replace(destination)
        except AcquisitionError:
            partial.unlink(missing_ok=True)
            raise
        except yt_dlp.utils.DownloadError as e:
            partial.unlink(missing_ok=True)
            raise AcquisitionError(f"Download failed: {e}") from e
        except Exception:
            partial.unlink(missing_ok=True)
            raise

        logger.info(f"Download complete: {destination}")
        return destination
