import os

APP_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.environ.get("VIDSTASH_DATA_DIR", os.path.join(APP_DIR, "data"))
CONFIG_DIR = os.environ.get("VIDSTASH_CONFIG_DIR", os.path.join(APP_DIR, "config"))
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.yaml")
DEFAULT_DB_FILE = os.path.join(DATA_DIR, "video_storage.db")
DEFAULT_BACKUP_DIR = os.path.join(DATA_DIR, "backups")

BUILD_VERSION = "20261019_0900"

VIDEO_EXTENSIONS = [".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v"]

# Storage key for the forum session cookie
SESSION_COOKIE_KEY = "scraper_session_cookie"

SCRAPER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

JDOWNLOADER_URL = "http://localhost:3128"

DEFAULT_SETTINGS = {
    "scraper": {
        "source": "simpcity",
        "page_delay": 1.0,
        "thread_delay": 3.0,
        "index_delay": 2.0,
        "timeout": 30,
        "max_redirects": 10,
        "max_retries": 3,
        "retry_backoff": 10.0,
        "checkpoint_every": 10,
    },
    "verifier": {
        "link_delay": 0.5,
        "sweep_delay": 1.0,
        "timeout": 15,
        "max_redirects": 5,
        "sweep_interval_hours": 24,
        "sweep_limit": 100,
        "max_age_days": 7,
    },
    "scheduler": {
        "tick_seconds": 30,
        "history_retention_days": 30,
    },
    "companion": {
        "health_interval": 3600,
        "analysis_interval": 21600,
        "activity_poll_interval": 5,
        "summary_interval_hours": 24,
        "thresholds": {
            "performers_missing_thumbnails": 5,
            "tagging_min_videos": 50,
            "tagging_max_tags": 5,
            "linking_min_videos": 100,
            "linking_max_performers": 10,
            "previews_missing": 20,
            "previews_min_videos": 50,
            "performers_missing_metadata": 10,
            "videos_missing_thumbnails": 100,
            "videos_missing_metadata": 50,
        },
    },
    "watcher": {
        "settle_seconds": 5,
        "use_polling": False,
        "health_interval": 30,
    },
    "hub": {
        "buffer_size": 10,
    },
    "backup": {
        "retention_days": 30,
        "keep_minimum": 3,
    },
}
