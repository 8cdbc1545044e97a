from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .logging_utils import get_logger
from .metrics import VAULT_SWEPT


COVER_TTL_SECONDS = 5 * 60
SWEEP_INTERVAL_SECONDS = 60

logger = get_logger("cinesonics.vault")


class RedeemStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenEntry:
    resource_locator: str
    expires_at: float


@dataclass(frozen=True)
class Redemption:
    status: RedeemStatus
    resource_locator: Optional[str] = None


class TokenVault:
    """One-time tokens that stand in for an upstream URL carrying the API key.

    A token is valid while present and ``now < expires_at``. Redemption pops
    the entry before the caller does anything with it, so a token can never
    be used twice even if the follow-up fetch fails.
    """

    def __init__(self, default_ttl: float = COVER_TTL_SECONDS, now: Callable[[], float] | None = None):
        self.default_ttl = float(default_ttl)
        self.now = now or time.time
        self._entries: Dict[str, TokenEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return token in self._entries

    def issue(self, resource_locator: str, ttl: float | None = None) -> str:
        ttl = self.default_ttl if ttl is None else float(ttl)
        token = secrets.token_urlsafe(16)  # 128 bits
        self._entries[token] = TokenEntry(resource_locator, self.now() + ttl)
        return token

    def redeem(self, token: str) -> Redemption:
        entry = self._entries.pop(token, None)
        if entry is None:
            return Redemption(RedeemStatus.NOT_FOUND)
        if self.now() >= entry.expires_at:
            return Redemption(RedeemStatus.EXPIRED)
        return Redemption(RedeemStatus.OK, entry.resource_locator)

    def sweep(self) -> int:
        now = self.now()
        expired = [tok for tok, entry in self._entries.items() if entry.expires_at <= now]
        for tok in expired:
            self._entries.pop(tok, None)
        if expired:
            VAULT_SWEPT.inc(len(expired))
            logger.info("Swept expired cover tokens", extra={"swept": len(expired)})
        return len(expired)


async def sweep_periodically(vault: TokenVault, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
    while True:
        await asyncio.sleep(interval)
        vault.sweep()
