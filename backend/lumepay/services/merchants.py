import logging
from typing import Optional

from sqlalchemy.orm import Session

from lumepay.core.errors import Conflict, InvalidInput, Unauthenticated
from lumepay.core.security import hash_password, verify_password
from lumepay.models.merchant import Merchant
from lumepay.services.bank import parse_bank_settings

logger = logging.getLogger(__name__)


def register_merchant(db: Session, email: str, password: str, name: Optional[str] = None) -> Merchant:
    existing = db.query(Merchant).filter(Merchant.email == email).first()
    if existing:
        raise Conflict("Email already registered")

    if not password or len(password) < 8:
        raise InvalidInput("Password must be at least 8 characters")

    merchant = Merchant(
        email=email,
        name=name.strip() if name else None,
        hashed_password=hash_password(password),
    )
    db.add(merchant)
    db.commit()
    db.refresh(merchant)

    logger.info("Merchant registered", extra={"merchant_id": merchant.id})
    return merchant


def authenticate_merchant(db: Session, email: str, password: str) -> Merchant:
    merchant = db.query(Merchant).filter(Merchant.email == email).first()
    if not merchant or not verify_password(password, merchant.hashed_password):
        raise Unauthenticated("Invalid email or password")
    return merchant


def update_name(db: Session, merchant: Merchant, name: Optional[str]) -> Merchant:
    if not name or not name.strip():
        raise InvalidInput("Name is required")

    merchant.name = name.strip()
    db.commit()
    db.refresh(merchant)
    return merchant


def update_bank_settings(db: Session, merchant: Merchant, bank_account: Optional[str], bank_name: Optional[str]) -> Merchant:
    bank = parse_bank_settings(bank_account, bank_name)

    merchant.bank_account = bank.account
    merchant.bank_name = bank.bank_name
    db.commit()
    db.refresh(merchant)

    logger.info("Bank settings updated", extra={"merchant_id": merchant.id, "bank_name": bank.bank_name})
    return merchant
