import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest


# Ensure src/ is on sys.path for test imports without installation
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


GOOD_REPLY = '{"albumTitle":"Night Drive","albumArtist":"Various Artists","genre":"Synthwave","vibeTag":"neon rain","tracks":[{"title":"Wet Asphalt","artist":"Chrome Saints","duration":"3:42"}]}'


class Clock:
    """Settable epoch clock, injected as ``now`` into the ledger and vault."""

    def __init__(self, t: float = 1_760_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeUpstream:
    def __init__(self, reply: str = GOOD_REPLY):
        self.reply = reply
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[str, str]] = []
        self.fetched: List[str] = []
        self.image_error: Optional[Exception] = None

    async def complete(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        if self.error is not None:
            raise self.error
        return self.reply

    def cover_url(self, prompt: str, seed: int) -> str:
        return f"https://img.test/{len(prompt)}?seed={seed}&key=secret"

    async def fetch_image(self, url: str):
        self.fetched.append(url)
        if self.image_error is not None:
            raise self.image_error
        return b"\x89PNG fake", "image/png"


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


def run(coro):
    return asyncio.run(coro)
