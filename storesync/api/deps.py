"""Request dependencies: service container and internal-secret check."""

from __future__ import annotations

import secrets

from fastapi import Header, Request

from storesync.config import get_settings
from storesync.kernel.errors import UnauthorizedError
from storesync.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def require_internal_secret(
    x_internal_secret: str | None = Header(default=None, alias="X-Internal-Secret"),
) -> None:
    """Open when no secret is configured (local development)."""
    expected = get_settings().internal_api_secret
    if not expected:
        return
    if not x_internal_secret or not secrets.compare_digest(x_internal_secret, expected):
        raise UnauthorizedError(message="Invalid internal secret", code="auth.invalid_internal_secret")
