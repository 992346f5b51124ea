# config.py
import os
from typing import List

# ====== Upstream (Sleeper) ======
SLEEPER_API_URL: str = os.environ.get("SLEEPER_API_URL", "https://api.sleeper.app/v1")
SLEEPER_TIMEOUT_SECONDS: float = float(os.environ.get("SLEEPER_TIMEOUT_SECONDS", "30"))

# ~10 requests per second by default
SLEEPER_RATE_LIMIT_PER_MIN: int = int(os.environ.get("SLEEPER_RATE_LIMIT_PER_MIN", "600"))
# Attempts per request, the first one included
SLEEPER_MAX_RETRIES: int = int(os.environ.get("SLEEPER_MAX_RETRIES", "5"))
SLEEPER_BACKOFF_BASE_SECONDS: float = float(os.environ.get("SLEEPER_BACKOFF_BASE_SECONDS", "2.0"))
SLEEPER_BACKOFF_CAP_SECONDS: float = float(os.environ.get("SLEEPER_BACKOFF_CAP_SECONDS", "15.0"))
SLEEPER_BACKOFF_JITTER_SECONDS: float = float(os.environ.get("SLEEPER_BACKOFF_JITTER_SECONDS", "0.25"))

# Bounded fan-out for per-week fetches
FETCH_CONCURRENCY: int = int(os.environ.get("FETCH_CONCURRENCY", "4"))

# ====== Storage ======
DATABASE_PATH: str = os.environ.get("DATABASE_PATH", "provenance.db")
EVENT_INSERT_CHUNK_SIZE: int = int(os.environ.get("EVENT_INSERT_CHUNK_SIZE", "500"))

# ====== Sync jobs ======
STUCK_SYNC_MINUTES: int = int(os.environ.get("STUCK_SYNC_MINUTES", "5"))

# ====== Season calendar ======
MAX_WEEK: int = 18
DEFAULT_SEASON_LAST_WEEK: int = 17
MAX_REGULAR_SEASON_GAMES: int = 16
BYE_WEEK_FIRST: int = 4
BYE_WEEK_LAST: int = 14

# Future picks every roster starts with
FUTURE_PICK_SEASONS: int = 3
DEFAULT_DRAFT_ROUNDS: int = 4

# ====== Benchmarks ======
MIN_BENCHMARK_SAMPLE: int = int(os.environ.get("MIN_BENCHMARK_SAMPLE", "3"))

# ====== API ======
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
