from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from chainweave_server.schemas.nft_request import ServiceResult

_CODE_STATUS = {
    'not_found': status.HTTP_404_NOT_FOUND,
    'forbidden': status.HTTP_403_FORBIDDEN,
    'conflict': status.HTTP_409_CONFLICT,
    'invalid': status.HTTP_422_UNPROCESSABLE_ENTITY,
    'unavailable': status.HTTP_503_SERVICE_UNAVAILABLE,
}


def unwrap(result: ServiceResult) -> Any:
    """Return ``result.data`` or raise the HTTPException matching its failure code."""
    if result.success:
        return result.data
    code = _CODE_STATUS.get(result.code or '', status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail=result.error or 'request failed')
