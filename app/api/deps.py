from typing import Annotated
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import verify_access_token
from app.schemas.stock_reconciliation import Actor
from app.services.stock_reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Dependency to get the acting user.
    Validates the JWT issued by the identity provider and returns its
    user id and role.
    """
    actor = verify_access_token(credentials.credentials)
    if actor is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def get_reconciliation_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReconciliationService:
    return ReconciliationService(db)


# Type aliases for cleaner endpoint signatures
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Reconciliations = Annotated[ReconciliationService, Depends(get_reconciliation_service)]
