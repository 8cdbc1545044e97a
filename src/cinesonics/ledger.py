from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .logging_utils import get_logger


GLOBAL_LIMIT = 11
USER_LIMIT = 2

logger = get_logger("cinesonics.ledger")


class ReserveOutcome(str, Enum):
    ALLOWED = "allowed"
    DENIED_GLOBAL = "denied_global"
    DENIED_USER = "denied_user"


@dataclass
class ClientUsage:
    count: int
    date: str


@dataclass(frozen=True)
class Remaining:
    user: int
    global_: int

    def as_dict(self) -> Dict[str, int]:
        return {"user": self.user, "global": self.global_}


def resolve_client_id(forwarded_for: Optional[str], peer: Optional[str]) -> str:
    """Best-effort client attribution: first X-Forwarded-For hop, then the peer address."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if peer:
        return peer
    return "unknown"


class QuotaLedger:
    """In-memory daily generation counters, site-wide and per client.

    Both counters share one UTC calendar-date key and are reset lazily on the
    first access after midnight UTC. Not persisted across restarts.
    """

    def __init__(
        self,
        global_limit: int = GLOBAL_LIMIT,
        user_limit: int = USER_LIMIT,
        now: Callable[[], float] | None = None,
    ):
        self.global_limit = int(max(0, global_limit))
        self.user_limit = int(max(0, user_limit))
        self.now = now or time.time
        self.global_count = 0
        self.reset_date = self._today()
        self.per_client: Dict[str, ClientUsage] = {}

    def _today(self) -> str:
        return time.strftime("%Y-%m-%d", time.gmtime(self.now()))

    def reset_if_new_day(self) -> bool:
        today = self._today()
        if self.reset_date == today:
            return False
        self.global_count = 0
        self.per_client.clear()
        self.reset_date = today
        logger.info(f"New day {today}, counters reset")
        return True

    def _usage(self, client_id: str) -> ClientUsage:
        rec = self.per_client.get(client_id)
        if rec is None or rec.date != self.reset_date:
            rec = self.per_client[client_id] = ClientUsage(count=0, date=self.reset_date)
        return rec

    def remaining(self, client_id: str) -> Remaining:
        self.reset_if_new_day()
        rec = self._usage(client_id)
        return Remaining(
            user=max(0, self.user_limit - rec.count),
            global_=max(0, self.global_limit - self.global_count),
        )

    def try_reserve(self, client_id: str) -> ReserveOutcome:
        self.reset_if_new_day()
        if self.global_count >= self.global_limit:
            return ReserveOutcome.DENIED_GLOBAL
        if self._usage(client_id).count >= self.user_limit:
            return ReserveOutcome.DENIED_USER
        return ReserveOutcome.ALLOWED

    def commit(self, client_id: str) -> ClientUsage:
        """Charge one generation. Call only after the guarded work succeeded."""
        self.reset_if_new_day()
        rec = self._usage(client_id)
        rec.count += 1
        self.global_count += 1
        return rec

    def reset_seconds(self) -> int:
        t = time.gmtime(self.now())
        # seconds to midnight UTC
        secs_today = t.tm_hour * 3600 + t.tm_min * 60 + t.tm_sec
        return 86400 - secs_today
