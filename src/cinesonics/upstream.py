from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings, settings as default_settings
from .errors import (
    EmptyResult,
    MalformedUpstreamPayload,
    UpstreamAuthFailed,
    UpstreamBalanceExhausted,
    UpstreamUnavailable,
)
from .logging_utils import get_logger
from .metrics import UPSTREAM_LATENCY


logger = get_logger("cinesonics.upstream")

_TRANSIENT = (APIConnectionError, InternalServerError)


class PollinationsClient:
    """Async access to the Pollinations text and image APIs.

    The text API speaks the OpenAI chat-completions protocol, so it is driven
    through ``AsyncOpenAI`` pointed at the Pollinations base URL. Images are
    plain GETs whose URL embeds the API key; that URL is only ever handed to
    the token vault, never to a browser.
    """

    def __init__(self, api_key: str, cfg: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.api_key = api_key
        self.cfg = cfg or default_settings
        self.http_client = http_client
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.cfg.text_api_base,
                timeout=self.cfg.upstream_timeout,
                max_retries=0,
                http_client=self.http_client,
            )
        return self._client

    async def _create(self, messages: List[Dict[str, str]]) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_TRANSIENT),
            wait=wait_exponential(min=1, max=10),
            stop=stop_after_attempt(max(1, self.cfg.upstream_retries)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Retrying chat completion (attempt {attempt.retry_state.attempt_number})")
                return await self.client.chat.completions.create(
                    model=self.cfg.text_model,
                    temperature=self.cfg.temperature,
                    messages=messages,
                )

    async def complete(self, system: str, user: str) -> str:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        start = time.perf_counter()
        try:
            resp = await self._create(messages)
        except AuthenticationError as e:
            logger.error("Text API rejected the API key", extra={"status_code": e.status_code})
            raise UpstreamAuthFailed() from e
        except APIStatusError as e:
            logger.error("Text API returned an error", extra={"status_code": e.status_code})
            if e.status_code == 402:
                raise UpstreamBalanceExhausted() from e
            raise UpstreamUnavailable(e.status_code) from e
        except APIConnectionError as e:
            logger.error(f"Text API unreachable: {e}")
            raise UpstreamUnavailable() from e
        except (APIError, ValueError) as e:
            logger.error(f"Text API returned an unreadable response: {type(e).__name__}")
            raise MalformedUpstreamPayload() from e
        finally:
            UPSTREAM_LATENCY.labels(call="chat").observe((time.perf_counter() - start) * 1000.0)
        choices = getattr(resp, "choices", None)
        if not isinstance(choices, list):
            # non-JSON bodies come back from the openai client as plain text
            logger.error("Text API returned a non-completion body")
            raise MalformedUpstreamPayload()
        content = choices[0].message.content if choices else None
        if not content:
            raise EmptyResult("No content returned from AI")
        return content

    def cover_url(self, prompt: str, seed: int) -> str:
        query = urlencode(
            {
                "model": self.cfg.image_model,
                "width": self.cfg.image_size,
                "height": self.cfg.image_size,
                "nologo": "true",
                "seed": seed,
                "key": self.api_key,
            }
        )
        return f"{self.cfg.image_api_base}/{quote(prompt, safe='')}?{query}"

    async def fetch_image(self, url: str) -> Tuple[bytes, str]:
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.cfg.upstream_timeout, follow_redirects=True) as http:
                r = await http.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Image API unreachable: {type(e).__name__}")
            raise UpstreamUnavailable(message="Failed to load album cover.") from e
        finally:
            UPSTREAM_LATENCY.labels(call="image").observe((time.perf_counter() - start) * 1000.0)
        if r.status_code >= 400:
            logger.error("Image API returned an error", extra={"status_code": r.status_code})
            raise UpstreamUnavailable(r.status_code, "Failed to load album cover.")
        return r.content, r.headers.get("content-type") or "image/jpeg"
