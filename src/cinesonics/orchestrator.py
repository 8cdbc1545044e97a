from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .errors import (
    CinesonicsError,
    EmptyResult,
    MalformedUpstreamPayload,
    MisconfiguredServer,
    QuotaExceeded,
    ValidationFailed,
)
from .ledger import QuotaLedger, Remaining, ReserveOutcome
from .logging_utils import get_logger
from .metrics import GENERATE_REQUESTS
from .prompts import COVER_TEMPLATE, SYSTEM_SOUNDTRACK, USER_TRACKLIST_TEMPLATE
from .vault import TokenVault


MAX_VIBE_CHARS = 600

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

logger = get_logger("cinesonics.orchestrator")


class Upstream(Protocol):
    async def complete(self, system: str, user: str) -> str: ...

    def cover_url(self, prompt: str, seed: int) -> str: ...

    async def fetch_image(self, url: str) -> Tuple[bytes, str]: ...


@dataclass
class GenerationResult:
    tracklist: Dict[str, Any]
    cover_token: str
    remaining: Remaining

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tracklist": self.tracklist,
            "coverToken": self.cover_token,
            "remaining": self.remaining.as_dict(),
        }


def extract_tracklist(content: str) -> Dict[str, Any]:
    """Parse the model reply, bare or wrapped in a markdown code fence."""
    m = _FENCED.search(content)
    raw = m.group(1).strip() if m else content.strip()
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.error(f"JSON parse failed: {content[:500]}")
        raise MalformedUpstreamPayload() from e
    if not isinstance(data, dict):
        raise MalformedUpstreamPayload()
    tracks = data.get("tracks")
    if not isinstance(tracks, list) or not tracks:
        raise EmptyResult()
    return data


def normalize_vibe(vibe: Any, max_chars: int = MAX_VIBE_CHARS) -> str:
    text = vibe.strip() if isinstance(vibe, str) else ""
    if not text or len(text) > max_chars:
        raise ValidationFailed(f"Please provide a vibe (max {max_chars} characters).")
    return text


class GenerationOrchestrator:
    """Sequences one generation: reserve, validate, call upstream, commit, mint cover token.

    Nothing before ``commit`` touches the ledger's counters, so every failure
    up to and including a bad upstream payload leaves the client's quota as
    it was.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        vault: TokenVault,
        upstream: Upstream,
        api_key: str,
        max_vibe_chars: int = MAX_VIBE_CHARS,
        cover_ttl: Optional[float] = None,
        clock_ms: Callable[[], int] | None = None,
    ):
        self.ledger = ledger
        self.vault = vault
        self.upstream = upstream
        self.api_key = api_key
        self.max_vibe_chars = max_vibe_chars
        self.cover_ttl = cover_ttl
        self.clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    def reserve(self, client_id: str) -> None:
        outcome = self.ledger.try_reserve(client_id)
        if outcome is ReserveOutcome.DENIED_GLOBAL:
            raise QuotaExceeded("global", self.ledger.global_limit)
        if outcome is ReserveOutcome.DENIED_USER:
            raise QuotaExceeded("user", self.ledger.user_limit)

    async def generate(self, client_id: str, vibe: Any) -> GenerationResult:
        try:
            result = await self._generate(client_id, vibe)
        except CinesonicsError as e:
            GENERATE_REQUESTS.labels(outcome=e.kind).inc()
            logger.warning(e.message, extra={"client_id": client_id, "kind": e.kind})
            raise
        GENERATE_REQUESTS.labels(outcome="ok").inc()
        return result

    async def _generate(self, client_id: str, vibe: Any) -> GenerationResult:
        self.reserve(client_id)
        text = normalize_vibe(vibe, self.max_vibe_chars)
        if not self.api_key:
            logger.error("POLLINATIONS_API_KEY is not set")
            raise MisconfiguredServer()

        content = await self.upstream.complete(SYSTEM_SOUNDTRACK, USER_TRACKLIST_TEMPLATE.format(vibe=text))
        tracklist = extract_tracklist(content)

        # Point of no return: charge quota, then mint the cover token.
        usage = self.ledger.commit(client_id)
        cover = self.upstream.cover_url(COVER_TEMPLATE.format(vibe=text), seed=self.clock_ms())
        token = self.vault.issue(cover, self.cover_ttl)
        logger.info(
            "Generated tracklist",
            extra={
                "client_id": client_id,
                "user_count": f"{usage.count}/{self.ledger.user_limit}",
                "global_count": f"{self.ledger.global_count}/{self.ledger.global_limit}",
            },
        )
        return GenerationResult(tracklist, token, self.ledger.remaining(client_id))
