from __future__ import annotations

import hmac
from fastapi import HTTPException, Request, status
from chainweave_server.core.config import settings

HEADER_NAME = 'x-chainweave-api-key'


def _get_configured_key(request: Request) -> str | None:
    # app.state wins so tests can switch the key without reloading settings
    value = getattr(request.app.state, 'api_key', None)
    if value is None:
        value = settings.api_key
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _matches(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode('utf-8'), provided.encode('utf-8'))


async def require_admin_key(request: Request) -> None:
    secret = _get_configured_key(request)
    if not secret:
        return
    provided = (request.headers.get(HEADER_NAME) or '').strip()
    if not provided:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Admin API key required')
    if not _matches(secret, provided):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid admin API key')
