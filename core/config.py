import os
from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _int_list(value: str) -> tuple[int, ...]:
    return tuple(int(v.strip()) for v in value.split(",") if v.strip())


class Config:
    BASE_DIR: Path = BASE_DIR
    DB_PATH: Path = Path(os.getenv("FEED_DB_PATH", str(BASE_DIR / "data" / "feeds.db")))
    LOG_DIR: Path = BASE_DIR / "logs"
    LOG_FILE: Path = LOG_DIR / "feeds.log"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_MAX_BYTES: int = int(os.getenv("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    LOG_BACKUP_COUNT: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

    USER_AGENT: str = os.getenv("FEED_USER_AGENT", "feed_aggregator/1.0")
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "20"))

    REDDIT_CLIENT_ID: str = os.getenv("REDDIT_CLIENT_ID", "")
    REDDIT_SECRET: str = os.getenv("REDDIT_SECRET", "")
    REDDIT_USER_AGENT: str = os.getenv("REDDIT_USER_AGENT", "feed_aggregator/1.0")
    REDDIT_FETCH_LIMIT: int = 25
    REDDIT_COMMENT_EXPAND_LIMIT: int = int(os.getenv("REDDIT_COMMENT_EXPAND_LIMIT", "0"))

    REFRESH_INTERVAL: timedelta = timedelta(minutes=int(os.getenv("REFRESH_INTERVAL_MINUTES", "60")))
    # 0 disables comment caching; every fetch_comments call goes upstream
    COMMENT_CACHE_MINUTES: int = int(os.getenv("COMMENT_CACHE_MINUTES", "0"))
    COMMENT_CACHE_TTL: timedelta | None = (
        timedelta(minutes=COMMENT_CACHE_MINUTES) if COMMENT_CACHE_MINUTES > 0 else None
    )
    # 0 runs every source on its own worker
    SOURCE_WORKERS: int = int(os.getenv("SOURCE_WORKERS", "0"))
    PURGE_AFTER_DAYS: int = int(os.getenv("PURGE_AFTER_DAYS", "7"))

    HN_API_URL: str = "https://hacker-news.firebaseio.com/v0"
    HN_SITE_URL: str = "https://news.ycombinator.com"
    HN_POST_LIMIT: int = 20
    HN_POST_POOL_SIZE: int = 20
    HN_MAX_TOP_COMMENTS: int = 20

    COMMENT_POOL_SIZES: tuple[int, ...] = _int_list(os.getenv("COMMENT_POOL_SIZES", "30,10"))
    COMMENT_RECURSE_LEVELS: int = int(os.getenv("COMMENT_RECURSE_LEVELS", "1"))
    COMMENT_MAX_REPLIES: int = int(os.getenv("COMMENT_MAX_REPLIES", "5"))

    LOBSTERS_URL: str = "https://lobste.rs"


config = Config()
