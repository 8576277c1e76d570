import os
from dataclasses import dataclass

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables.

    Read once at startup and never mutated. Site-level options that may be
    overridden remotely (title, favicon, feed endpoints) live in
    ``services.options.SiteOptions``.
    """

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    SITE_TITLE: str = os.getenv("SITE_TITLE", "")
    SITE_DESCRIPTION: str = os.getenv("SITE_DESCRIPTION", "")
    SITE_URL: str = os.getenv("SITE_URL", "http://localhost:8080")
    FAVICON_PATH: str = os.getenv("FAVICON_PATH", "static/favicon.ico")

    OPTIONS_API: str = os.getenv("OPTIONS_API", "")
    SITEMAP_API: str = os.getenv("SITEMAP_API", "")
    RSS_API: str = os.getenv("RSS_API", "")
    UPSTREAM_TIMEOUT: float = float(os.getenv("UPSTREAM_TIMEOUT", "10"))

    REFRESH_CRON: str = os.getenv("REFRESH_CRON", "30 3 * * *")
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "")

    DIST_DIR: str = os.getenv("DIST_DIR", "dist")
    STATIC_DIR: str = os.getenv("STATIC_DIR", "static")
    STATIC_MAX_AGE: int = int(os.getenv("STATIC_MAX_AGE", str(60 * 60 * 24 * 30)))

    RENDER_CACHE_MAX: int = int(os.getenv("RENDER_CACHE_MAX", "1000"))
    RENDER_CACHE_MAX_AGE: float = float(os.getenv("RENDER_CACHE_MAX_AGE", str(60 * 15)))
    DEV_POLL_INTERVAL: float = float(os.getenv("DEV_POLL_INTERVAL", "1.0"))

    ANALYTICS_ID: str = os.getenv("ANALYTICS_ID", "")
    ANALYTICS_ENDPOINT: str = os.getenv("ANALYTICS_ENDPOINT", "https://www.google-analytics.com/collect")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def dist_path(self, *parts: str) -> str:
        return os.path.join(self.DIST_DIR, *parts)

    def validate(self) -> None:
        if self.ENVIRONMENT not in ("production", "development"):
            raise ValueError(f"ENVIRONMENT must be 'production' or 'development', got {self.ENVIRONMENT!r}")
        if self.PORT <= 0:
            raise ValueError("PORT must be a positive integer")
        try:
            CronTrigger.from_crontab(self.REFRESH_CRON, timezone=self.SCHEDULER_TIMEZONE or None)
        except ValueError as e:
            raise ValueError(f"REFRESH_CRON is not a valid crontab expression: {e}") from e
