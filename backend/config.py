"""
Registry Network Engine - Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import computed_field
from typing import Optional
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Registry Network Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # API
    API_PREFIX: str = "/api"
    # Raw CORS_ORIGINS as string (comma-separated or JSON array)
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @computed_field
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from various formats (JSON array or comma-separated)."""
        v = self.CORS_ORIGINS
        if not v:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        # Try JSON first
        try:
            parsed = json.loads(v)
            if isinstance(parsed, list):
                return parsed
        except json.JSONDecodeError:
            pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # ===== REGISTRY GATEWAY =====

    # UK Companies House API (FREE - key required)
    # Get a key from: https://developer.company-information.service.gov.uk/
    UK_COMPANIES_HOUSE_API_KEY: Optional[str] = None
    COMPANIES_HOUSE_BASE_URL: str = "https://api.company-information.service.gov.uk"

    # Every gateway call carries its own timeout
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    # Upper bound on concurrent outbound calls per orchestrator
    GATEWAY_MAX_CONCURRENCY: int = 10

    # Page sizes
    OFFICERS_PAGE_SIZE: int = 35
    PSC_PAGE_SIZE: int = 35
    FILING_HISTORY_PAGE_SIZE: int = 25
    APPOINTMENTS_PAGE_SIZE: int = 50
    SEARCH_PAGE_SIZE: int = 100

    # ===== NETWORK ANALYSIS =====

    # Hard ceiling on traversal depth, independent of what callers request
    MAX_TRAVERSAL_DEPTH: int = 6
    DEFAULT_NETWORK_DEPTH: int = 2

    # Clusters larger than this are flagged (registered-agent mass incorporation)
    ADDRESS_CLUSTER_THRESHOLD: int = 50

    # Risk contribution multiplier per hop
    RISK_DECAY: float = 0.5

    # ===== ANALYSIS CACHE =====
    CACHE_TTL_HOURS: float = 24.0
    CACHE_BACKEND: str = "memory"  # memory | file
    CACHE_MAX_ENTRIES: int = 1024
    CACHE_DIR: str = "./cache"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Allow extra env vars that aren't defined in Settings


settings = Settings()
