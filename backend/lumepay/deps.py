from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from lumepay.core.clock import Clock, get_clock
from lumepay.core.errors import Unauthenticated, Forbidden
from lumepay.core.security import decode_access_token
from lumepay.database import get_db
from lumepay.models.api_key import ApiKey
from lumepay.models.merchant import Merchant
from lumepay.services import gate


# --- Dashboard session (bearer JWT) ---
def get_current_merchant(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Merchant:
    if not authorization:
        raise Unauthenticated("Missing token")

    payload = decode_access_token(authorization)
    if not payload or not payload.get("sub"):
        raise Unauthenticated("Invalid token")

    merchant = db.query(Merchant).filter(Merchant.id == payload["sub"]).first()
    if not merchant:
        raise Unauthenticated("Invalid token")
    return merchant


def admin_required(merchant: Merchant = Depends(get_current_merchant)) -> Merchant:
    if not merchant.is_admin:
        raise Forbidden("Admin access required")
    return merchant


# --- API key gate ---
def require_api_key(
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> tuple[ApiKey, Merchant]:
    return gate.authenticate(db, x_api_key, clock.now())


def optional_api_key(
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[tuple[ApiKey, Merchant]]:
    if x_api_key is None:
        return None
    return gate.identify(db, x_api_key)
