"""
SubStitch - Configuration Module
"""
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional

# Compute paths at module level for consistency
_BASE_DIR = Path(__file__).parent.parent

# Data directory: use SUBSTITCH_DATA_DIR env var, or default to ~/.substitch
_DATA_DIR = Path(os.environ.get("SUBSTITCH_DATA_DIR", Path.home() / ".substitch"))
_DATABASE_PATH = _DATA_DIR / "substitch.db"


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "SubStitch"
    DEBUG: bool = False

    # Paths
    BASE_DIR: Path = _BASE_DIR
    DATA_DIR: Path = _DATA_DIR

    # Database - use absolute path for consistent resolution
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DATABASE_PATH}"

    # LLM backend
    LLM_PROVIDER: str = "openai"  # openai, deepseek, claude
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: Optional[str] = None  # Overrides the provider default endpoint
    LLM_MODEL: str = "gpt-4o"
    LLM_TIMEOUT: float = 120.0

    # Proxy Settings (for provider access)
    PROXY_URL: Optional[str] = None

    # Languages
    SOURCE_LANG: str = "en"
    TARGET_LANG: str = "zh-TW"

    # Segmentation
    SEGMENTATION_PREFERENCE: str = "quality"  # quality, speed
    TOKENS_PER_CHAR: float = 1.3
    TRANSLATION_EXPANSION: float = 2.3  # Output is larger than input (JSON + target script)
    REQUEST_OVERHEAD_TOKENS: int = 500  # Prompt and instructions

    # Segment retry
    SEGMENT_MAX_ATTEMPTS: int = 2  # Initial attempt + one retry
    SEGMENT_RETRY_BACKOFF: float = 1.0
    TRANSLATE_TEMPERATURE: float = 0.1
    RETRY_TEMPERATURE: float = 0.0
    STITCH_TEMPERATURE: float = 0.2

    # Keyword extraction (title terms kept consistent across segments)
    KEYWORD_EXTRACTION: bool = True
    MAX_KEYWORDS: int = 15
    KEYWORD_TEMPERATURE: float = 0.3

    # Translation cache
    CACHE_ENABLED: bool = True
    CACHE_MAX_AGE_HOURS: float = 168.0  # 7 days

    # Stitching
    STITCH_ENABLED: bool = True
    STITCH_CONTEXT_SIZE: int = 8  # Entries sent per boundary, half on each side
    STITCH_CONTINUITY_THRESHOLD: int = 70
    STITCH_MAX_CONCURRENCY: int = 1  # 1 = sequential
    TIMESTAMP_EPSILON: float = 0.001

    # Timing optimization (optional phase after stitching)
    OPTIMIZE_TIMING: bool = False
    MIN_ENTRY_DURATION: float = 0.8
    MAX_GAP_FILL: float = 0.3

    # Liveness
    HEARTBEAT_INTERVAL: float = 30.0
    HEARTBEAT_SWEEP_INTERVAL: float = 60.0
    HEARTBEAT_STALE_THRESHOLD: float = 300.0

    # Task Queue Settings
    MAX_CONCURRENT_TASKS: int = 2  # Maximum number of translations running concurrently

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
