from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lumepay.core.errors import Conflict
from lumepay.core.security import create_access_token
from lumepay.database import get_db
from lumepay.deps import get_current_merchant
from lumepay.models.merchant import Merchant
from lumepay.schemas.merchant import MerchantCreate, MerchantLogin, MerchantRead
from lumepay.services.merchants import register_merchant, authenticate_merchant
from lumepay.services.system_settings import SettingsCache, get_waitlist_cache

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", response_model=MerchantRead)
def register(
    merchant_in: MerchantCreate,
    db: Session = Depends(get_db),
    waitlist: SettingsCache = Depends(get_waitlist_cache),
):
    if waitlist.get().enabled:
        raise Conflict("Registration is closed. Join the waitlist to get early access.")
    return register_merchant(db, merchant_in.email, merchant_in.password, merchant_in.name)


@router.post("/login")
def login(merchant_in: MerchantLogin, db: Session = Depends(get_db)):
    merchant = authenticate_merchant(db, merchant_in.email, merchant_in.password)
    token = create_access_token({"sub": merchant.id})
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=MerchantRead)
def me(current_merchant: Merchant = Depends(get_current_merchant)):
    return current_merchant
