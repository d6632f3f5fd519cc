"""
Receiving bank settings.

A merchant's bank settings are either ``CBE`` (the only supported
bank, 13 digit account number) or ``Unconfigured``. Every consumer goes
through ``require_bank_settings`` so there is exactly one notion of
"configured".
"""
import re
from dataclasses import dataclass

from lumepay.core.errors import BankNotConfigured, InvalidInput
from lumepay.models.merchant import Merchant

SUPPORTED_BANK = "CBE"
CBE_ACCOUNT_PATTERN = re.compile(r"[0-9]{13}")


@dataclass(frozen=True)
class CBE:
    account: str
    bank_name: str = SUPPORTED_BANK


@dataclass(frozen=True)
class Unconfigured:
    reason: str = "Merchant bank details not configured"


BankSettings = CBE | Unconfigured


def bank_settings_for(merchant: Merchant) -> BankSettings:
    if not merchant.bank_account or not merchant.bank_name:
        return Unconfigured()
    if merchant.bank_name != SUPPORTED_BANK:
        return Unconfigured("Only CBE bank is supported at the moment")
    if not CBE_ACCOUNT_PATTERN.fullmatch(merchant.bank_account):
        return Unconfigured("Invalid bank account number format")
    return CBE(account=merchant.bank_account)


def require_bank_settings(merchant: Merchant) -> CBE:
    settings = bank_settings_for(merchant)
    if isinstance(settings, Unconfigured):
        raise BankNotConfigured(settings.reason)
    return settings


def parse_bank_settings(bank_account: str | None, bank_name: str | None) -> CBE:
    """Validate bank details submitted from the settings form."""
    if not bank_account or not bank_name:
        raise InvalidInput("Bank account and bank name are required")

    bank_account = bank_account.strip()
    if not CBE_ACCOUNT_PATTERN.fullmatch(bank_account):
        raise InvalidInput("Invalid bank account number format")

    if bank_name != SUPPORTED_BANK:
        raise InvalidInput("Only CBE bank is supported at the moment")

    return CBE(account=bank_account)
