"""Configuration management for Channel Relay."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Application configuration."""

    # Base paths
    BASE_DIR = Path(__file__).resolve().parent.parent.parent
    DATA_DIR = Path(os.getenv("RELAY_DATA_DIR", str(BASE_DIR / "data")))
    STORAGE_DIR = Path(os.getenv("RELAY_STORAGE_DIR", str(DATA_DIR / "storage")))
    LOG_DIR = Path(os.getenv("RELAY_LOG_DIR", str(BASE_DIR / "logs")))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/channels.db")

    # Flask settings
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
    FLASK_PORT = int(os.getenv("FLASK_PORT", "3000"))
    DEBUG = os.getenv("DEBUG", "False").lower() == "true"

    # Relay (ffmpeg) settings
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
    VIDEO_BITRATE = os.getenv("VIDEO_BITRATE", "3000k")
    VIDEO_BUFSIZE = os.getenv("VIDEO_BUFSIZE", "6000k")
    AUDIO_BITRATE = os.getenv("AUDIO_BITRATE", "128k")
    KEYFRAME_INTERVAL = int(os.getenv("KEYFRAME_INTERVAL", "60"))  # 2s at 30fps
    LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "50"))

    # Scheduling
    RECONCILE_INTERVAL = int(os.getenv("RECONCILE_INTERVAL", "60"))  # seconds

    # Downloads
    FETCHER_BACKEND = os.getenv("FETCHER_BACKEND", "drive")  # drive or ytdlp
    DOWNLOAD_TIMEOUT = int(os.getenv("DOWNLOAD_TIMEOUT", "60"))
    DOWNLOAD_CHUNK_SIZE = int(os.getenv("DOWNLOAD_CHUNK_SIZE", str(1024 * 1024)))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = LOG_DIR / "channel_relay.log"

    @classmethod
    def ensure_directories(cls):
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.STORAGE_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

config = Config()
