import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from lumepay.core.config import settings
from lumepay.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class VerificationRequest(BaseModel):
    transaction_id: str
    expected_receiver_name: Optional[str] = None
    expected_receiver_account: str
    expected_amount: Decimal
    intent_created_at: datetime

    def to_wire(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "expected_receiver_name": self.expected_receiver_name,
            "expected_receiver_account": self.expected_receiver_account,
            "expected_amount": float(self.expected_amount),
            "intent_created_at": self.intent_created_at.isoformat(),
        }


class VerificationDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    payer: Optional[str] = None
    amount: Any = None
    date: Optional[str] = None
    receiver: Optional[str] = None


class VerificationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    details: Optional[VerificationDetails] = None


class VerificationClient:
    """Thin adapter over the bank verification service's ``POST /verify``."""

    def __init__(
        self,
        base_url: str = settings.VERIFICATION_SERVICE_URL,
        timeout: float = settings.VERIFICATION_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def verify(self, request: VerificationRequest) -> VerificationResult:
        url = f"{self.base_url}/verify"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=request.to_wire())
        except httpx.TimeoutException as e:
            logger.warning("Verification service timed out", extra={"transaction_id": request.transaction_id})
            raise UpstreamFailure("Verification service timed out") from e
        except httpx.HTTPError as e:
            logger.warning(
                "Verification service unreachable",
                extra={"transaction_id": request.transaction_id, "reason": str(e)},
            )
            raise UpstreamFailure("Verification service unavailable") from e

        # The verifier answers 4xx with a JSON body when it rejects a transfer
        try:
            result = VerificationResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning(
                "Verification service returned an unreadable response",
                extra={"transaction_id": request.transaction_id, "status_code": response.status_code},
            )
            raise UpstreamFailure("Verification service returned an invalid response") from e

        if response.status_code >= 500:
            raise UpstreamFailure(result.message or "Verification service error")

        if result.success and result.details is None:
            raise UpstreamFailure("Verification succeeded without transaction details")

        return result


verification_client = VerificationClient()


def get_verification_client() -> VerificationClient:
    return verification_client
