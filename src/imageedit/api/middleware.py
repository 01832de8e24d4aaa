"""Middleware and dependencies: API key auth, rate limiting, response headers."""

from __future__ import annotations

import logging
import secrets
import uuid
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from imageedit.errors import REQUEST_ID_HEADER, SOURCE_CODE_HEADER, RateLimited, Unauthorized
from imageedit.ratelimit import retry_after_seconds

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.responses import Response

    from imageedit.config import Settings
    from imageedit.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

_api_key_scheme = APIKeyHeader(name="X-Api-Key", auto_error=False)


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    api_key: Annotated[str | None, Depends(_api_key_scheme)],
) -> None:
    """Check the X-Api-Key header against the configured keys.

    With no keys configured every request is rejected.
    """
    if not api_key:
        raise Unauthorized("Missing X-Api-Key header")

    valid_keys = _get_settings_from_request(request).api_key_list
    if not valid_keys:
        logger.warning("No API keys configured! All requests will be rejected.")

    if not _is_known_key(api_key, valid_keys):
        raise Unauthorized("Invalid API key")


def _is_known_key(api_key: str, valid_keys: list[str]) -> bool:
    return any(secrets.compare_digest(api_key.encode(), key.encode()) for key in valid_keys)


def _client_key(request: Request) -> str:
    """Bucket configured API keys by key; everything else by client address."""
    api_key = request.headers.get("x-api-key")
    if api_key and _is_known_key(api_key, _get_settings_from_request(request).api_key_list):
        return f"key:{api_key}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


async def enforce_rate_limit(request: Request) -> None:
    """Reject the request once the client exhausts its window."""
    limiter: RateLimiter = request.app.state.rate_limiter
    wait = await limiter.acquire(_client_key(request))
    if wait is not None:
        raise RateLimited(f"Rate limit exceeded. Try again in {retry_after_seconds(wait)} seconds")


async def add_response_headers(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag every response with the source URL and a correlation id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = request_id

    response = await call_next(request)

    response.headers[SOURCE_CODE_HEADER] = _get_settings_from_request(request).source_code_url
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
