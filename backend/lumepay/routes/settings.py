from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lumepay.database import get_db
from lumepay.deps import get_current_merchant
from lumepay.models.merchant import Merchant
from lumepay.schemas.merchant import BankUpdate, MerchantRead, NameUpdate
from lumepay.services import merchants

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.post("/name")
def update_name(
    payload: NameUpdate,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    merchant = merchants.update_name(db, merchant, payload.name)
    return {"message": "Name updated successfully", "user": MerchantRead.model_validate(merchant)}


@router.post("/bank")
def update_bank(
    payload: BankUpdate,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    merchant = merchants.update_bank_settings(db, merchant, payload.bank_account, payload.bank_name)
    return {"message": "Bank settings updated successfully", "user": MerchantRead.model_validate(merchant)}
