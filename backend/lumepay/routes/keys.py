from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lumepay.database import get_db
from lumepay.deps import get_current_merchant
from lumepay.models.merchant import Merchant
from lumepay.schemas.api_key import ApiKeyCreate, ApiKeyCreated, ApiKeyRead, ApiKeyUpdate
from lumepay.services import api_keys

router = APIRouter(prefix="/keys", tags=["API Keys"])


@router.post("")
def create_key(
    payload: ApiKeyCreate,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    api_key = api_keys.create_api_key(db, merchant, payload.name)
    return {"apiKey": ApiKeyCreated.model_validate(api_key)}


@router.get("")
def list_keys(
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    return {"apiKeys": [ApiKeyRead.model_validate(k) for k in api_keys.list_api_keys(db, merchant)]}


@router.get("/{key_id}")
def get_key(
    key_id: str,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    return {"apiKey": ApiKeyRead.model_validate(api_keys.get_api_key(db, merchant, key_id))}


@router.patch("/{key_id}")
def update_key(
    key_id: str,
    payload: ApiKeyUpdate,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    api_key = api_keys.update_api_key(
        db,
        merchant,
        key_id,
        name=payload.name,
        enabled=payload.enabled,
        rate_limit_enabled=payload.rate_limit_enabled,
        rate_limit_max=payload.rate_limit_max,
    )
    return {"apiKey": ApiKeyRead.model_validate(api_key)}


@router.delete("/{key_id}")
def delete_key(
    key_id: str,
    merchant: Merchant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    api_keys.delete_api_key(db, merchant, key_id)
    return {"success": True}
