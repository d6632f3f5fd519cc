from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from lumepay.schemas.intent import CamelModel


class MerchantCreate(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None


class MerchantLogin(BaseModel):
    email: EmailStr
    password: str


class MerchantRead(CamelModel):
    id: str
    email: EmailStr
    name: Optional[str] = None
    bank_account: Optional[str] = None
    bank_name: Optional[str] = None
    is_admin: bool
    created_at: datetime


class NameUpdate(BaseModel):
    name: Optional[str] = None


class BankUpdate(CamelModel):
    bank_account: Optional[str] = None
    bank_name: Optional[str] = None


class WaitlistConfigUpdate(BaseModel):
    enabled: bool
    message: str
