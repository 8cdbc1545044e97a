"""Error taxonomy shared by the ledger, vault, orchestrator and HTTP layer.

Every error carries a ``kind`` discriminator and the HTTP status the API
reports it with. Quota and validation errors are raised before any upstream
call; the upstream family is raised after a reservation but before commit,
so none of them ever costs quota.
"""
from __future__ import annotations

from typing import Optional


class CinesonicsError(Exception):
    kind = "upstream_error"
    http_status = 500
    default_message = "Generation failed. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.message, "kind": self.kind}


class QuotaExceeded(CinesonicsError):
    http_status = 429

    def __init__(self, scope: str, limit: int):
        if scope not in ("user", "global"):
            raise ValueError(f"unknown quota scope: {scope}")
        self.scope = scope
        self.limit = limit
        self.kind = f"{scope}_limit"
        if scope == "global":
            message = "Daily site-wide generation limit reached. Please come back tomorrow!"
        else:
            message = f"You've used your {limit} free generations for today. Come back tomorrow!"
        super().__init__(message)


class ValidationFailed(CinesonicsError):
    kind = "validation"
    http_status = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UpstreamUnavailable(CinesonicsError):
    def __init__(self, status_code: Optional[int] = None, message: Optional[str] = None):
        self.status_code = status_code
        if message is None:
            message = (
                f"Pollinations API error ({status_code})" if status_code is not None
                else "Could not reach the generation service."
            )
        super().__init__(message)


class UpstreamAuthFailed(CinesonicsError):
    default_message = "Server API key is invalid."


class UpstreamBalanceExhausted(CinesonicsError):
    default_message = "API balance exhausted. Contact the site owner."


class MalformedUpstreamPayload(CinesonicsError):
    default_message = "AI returned unparseable data - please try again"


class EmptyResult(CinesonicsError):
    default_message = "AI returned an empty tracklist"


class MisconfiguredServer(CinesonicsError):
    kind = "server_misconfigured"
    default_message = "Server misconfigured - API key missing."


class TokenNotFound(CinesonicsError):
    kind = "token_not_found"
    http_status = 404
    default_message = "Cover not found or already used."


class TokenExpired(CinesonicsError):
    kind = "token_expired"
    http_status = 410
    default_message = "Cover token expired."
