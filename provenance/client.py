import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from . import config
from .errors import SourceUnavailableError

logger = logging.getLogger(__name__)


async def _no_sleep(_seconds: float) -> None:
    return None


class RequestScheduler:
    """Spaces upstream calls process-wide and decides retry backoff.

    One instance is shared by every ``SleeperClient`` call in the process.
    Tests build one with ``RequestScheduler.immediate()``.
    """

    def __init__(
        self,
        min_interval: float,
        max_attempts: int,
        backoff_base: float,
        backoff_cap: float,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.min_interval = min_interval
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.jitter = jitter
        self._sleep = sleep
        self._clock = clock
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls) -> "RequestScheduler":
        return cls(
            min_interval=60.0 / max(config.SLEEPER_RATE_LIMIT_PER_MIN, 1),
            max_attempts=config.SLEEPER_MAX_RETRIES,
            backoff_base=config.SLEEPER_BACKOFF_BASE_SECONDS,
            backoff_cap=config.SLEEPER_BACKOFF_CAP_SECONDS,
            jitter=config.SLEEPER_BACKOFF_JITTER_SECONDS,
        )

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> "RequestScheduler":
        return cls(min_interval=0.0, max_attempts=max_attempts, backoff_base=0.0, backoff_cap=0.0, sleep=_no_sleep)

    async def wait_turn(self) -> None:
        async with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            if wait > 0:
                await self._sleep(wait)
                now = self._clock()
            self._next_slot = max(now, self._next_slot) + self.min_interval

    def backoff_delay(self, attempt: int) -> float:
        delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_cap)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    async def backoff(self, attempt: int) -> None:
        await self._sleep(self.backoff_delay(attempt))


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class SleeperClient:
    """Read-only Sleeper API adapter. Returns decoded JSON as sent by Sleeper."""

    def __init__(self, http: httpx.AsyncClient, scheduler: RequestScheduler, base_url: Optional[str] = None):
        self.http = http
        self.scheduler = scheduler
        self.base_url = (base_url or config.SLEEPER_API_URL).rstrip("/")

    async def get(self, path: str, not_found: Any = None, allow_not_found: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Optional[SourceUnavailableError] = None

        for attempt in range(1, self.scheduler.max_attempts + 1):
            await self.scheduler.wait_turn()
            try:
                response = await self.http.get(url, headers={"accept": "application/json"})
            except httpx.TransportError as e:
                last_error = SourceUnavailableError(url, message=repr(e))
            else:
                if response.status_code == 404 and allow_not_found:
                    return not_found
                if _is_retryable(response.status_code):
                    last_error = SourceUnavailableError(url, status_code=response.status_code)
                elif response.is_error:
                    raise SourceUnavailableError(url, status_code=response.status_code)
                else:
                    return response.json()

            if attempt < self.scheduler.max_attempts:
                logger.warning("Retrying %s after attempt %d: %s", url, attempt, last_error)
                await self.scheduler.backoff(attempt)

        raise last_error

    async def get_user_by_username(self, username: str):
        return await self.get(f"/user/{username}")

    async def get_league(self, league_id: str):
        return await self.get(f"/league/{league_id}")

    async def get_league_users(self, league_id: str):
        return await self.get(f"/league/{league_id}/users", not_found=[], allow_not_found=True)

    async def get_league_rosters(self, league_id: str):
        return await self.get(f"/league/{league_id}/rosters", not_found=[], allow_not_found=True)

    async def get_league_transactions(self, league_id: str, week: int):
        return await self.get(f"/league/{league_id}/transactions/{week}", not_found=[], allow_not_found=True)

    async def get_league_matchups(self, league_id: str, week: int):
        return await self.get(f"/league/{league_id}/matchups/{week}", not_found=[], allow_not_found=True)

    async def get_league_drafts(self, league_id: str):
        return await self.get(f"/league/{league_id}/drafts", not_found=[], allow_not_found=True)

    async def get_draft_picks(self, draft_id: str):
        return await self.get(f"/draft/{draft_id}/picks", not_found=[], allow_not_found=True)

    async def get_traded_picks(self, league_id: str):
        return await self.get(f"/league/{league_id}/traded_picks", not_found=[], allow_not_found=True)

    async def get_all_players(self):
        return await self.get("/players/nfl")

    async def get_nfl_state(self):
        return await self.get("/state/nfl")
