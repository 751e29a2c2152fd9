"""Application settings and configuration"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "PulsePoint"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    USER_AGENT: str = "PulsePointApp/1.0.0"

    # GitHub API
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TIMEOUT_SECONDS: float = 30.0  # Deadline per upstream call
    GITHUB_CONNECT_RETRIES: int = 2  # Connection-establishment failures only

    # Reporting target
    TARGET_ORG: Optional[str] = None
    TARGET_REPOS: str = ""  # Comma separated; empty means every org repository
    DEFAULT_LOOKBACK_DAYS: int = 30

    # Flat-file cache
    CACHE_DIR: str = ".cache/github"
    CACHE_DISABLED: bool = False
    CACHE_MAX_AGE_HOURS: int = 24  # Fresh enough for the initial dashboard load

    # Sub-cache TTLs
    MEMBERS_CACHE_TTL_SECONDS: int = 60 * 60
    REPOS_CACHE_TTL_SECONDS: int = 60 * 60
    COMMITS_CACHE_TTL_SECONDS: int = 15 * 60
    USER_ACTIVITY_CACHE_TTL_SECONDS: int = 15 * 60
    ORG_ACTIVITY_CACHE_TTL_SECONDS: int = 15 * 60

    # Fan-out caps
    REPO_SCAN_CONCURRENCY: int = 5
    MEMBER_SEARCH_CONCURRENCY: int = 8
    PROFILE_FETCH_CONCURRENCY: int = 8

    @property
    def target_repos(self) -> list[str]:
        return [part.strip() for part in self.TARGET_REPOS.split(",") if part.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
