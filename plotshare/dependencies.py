import uuid

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.database import get_db
from plotshare.services.bookings import BookingProvider
from plotshare.services.identity import IdentityProvider, InvalidToken, decode_identity_token
from plotshare.services.notifications import TransactionalNotifier, notification_dispatcher
from plotshare.services.reconciliation import ReconciliationService, StripeReconciliationService

logger = structlog.get_logger()
security = HTTPBearer()


def get_identity_provider(db: AsyncSession = Depends(get_db)) -> IdentityProvider:
    return IdentityProvider(db)


def get_booking_provider(db: AsyncSession = Depends(get_db)) -> BookingProvider:
    return BookingProvider(db)


def get_reconciliation_service(
    bookings: BookingProvider = Depends(get_booking_provider),
) -> ReconciliationService:
    return StripeReconciliationService(bookings)


def get_notification_dispatcher(db: AsyncSession = Depends(get_db)) -> TransactionalNotifier:
    """Dispute events of a request go out only once its transaction commits."""
    return TransactionalNotifier(db, notification_dispatcher)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> uuid.UUID:
    """Validate the identity-provider token and return the acting user's id."""
    try:
        user_id = decode_identity_token(credentials.credentials)
    except InvalidToken as exc:
        logger.info("identity_token_rejected", reason=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    user = await identity.get_active_user(user_id)
    if user is None:
        # Unknown and deactivated accounts look the same from outside
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user.id
