from dataclasses import dataclass
from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.cache_service import CacheService, get_cache


logger = logging.getLogger(__name__)


@dataclass
class CallerContext:
    """Organization and (optionally) client a request acts for."""
    organization_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.warning(f"Invalid {header} header: {value}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header"
        )


async def get_caller(
    x_organization_id: Annotated[str, Header(alias="X-Organization-ID")],
    x_client_id: Annotated[Optional[str], Header(alias="X-Client-ID")] = None,
) -> CallerContext:
    """
    Dependency resolving the caller from request headers.

    X-Organization-ID is required; X-Client-ID identifies the buying client
    on storefront calls and is absent on back-office calls.
    """
    organization_id = _parse_uuid(x_organization_id, "X-Organization-ID")
    client_id = _parse_uuid(x_client_id, "X-Client-ID") if x_client_id else None
    return CallerContext(organization_id=organization_id, client_id=client_id)


def get_price_cache() -> CacheService:
    return get_cache()


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Caller = Annotated[CallerContext, Depends(get_caller)]
PriceCache = Annotated[CacheService, Depends(get_price_cache)]
