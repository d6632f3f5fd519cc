"""
Merchant webhooks: configuration, signing and delivery.

A delivery attempt is a job on the dispatcher's queue. The worker runs
one attempt, appends a WebhookDelivery row for it and, if it failed and
retries are left, schedules the next attempt after 5s, 15s and 30s.
Request handlers only ever enqueue, so a slow merchant endpoint never
holds up an API response.

Payloads are signed with HMAC-SHA256 over the exact bytes that are sent.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, joinedload

from lumepay.core.clock import Clock, clock as default_clock
from lumepay.core.config import settings
from lumepay.core.errors import InvalidInput, Conflict, Forbidden, DeliveryNotFound, WebhookNotConfigured
from lumepay.core.security import generate_webhook_secret
from lumepay.database import SessionLocal
from lumepay.models.merchant import Merchant
from lumepay.models.payment import Payment, PaymentStatus
from lumepay.models.webhook import (
    ALL_EVENTS,
    DeliveryStatus,
    WebhookDelivery,
    WebhookEvent,
    WebhookSettings,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
DELIVERY_HISTORY_LIMIT = 50


# =========================
# PAYLOAD + SIGNATURE
# =========================
def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds") + "Z"


def event_for(payment: Payment) -> str:
    if payment.status == PaymentStatus.FAILED.value:
        return WebhookEvent.PAYMENT_FAILED.value
    return WebhookEvent.PAYMENT_COMPLETED.value


def build_payload(payment: Payment, now: datetime) -> dict:
    event = event_for(payment)
    data = {
        "paymentId": payment.id,
        "amount": float(payment.amount),
        "status": payment.status,
        "transactionId": payment.transaction_id,
        "verificationData": payment.verification_data,
        "createdAt": _iso(payment.created_at),
    }
    if event == WebhookEvent.PAYMENT_FAILED.value:
        data["errorReason"] = payment.error_reason

    return {"event": event, "data": data, "timestamp": _iso(now)}


def serialize_payload(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a received body against its signature header."""
    if not signature or not secret:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


# =========================
# CONFIGURATION
# =========================
def default_config() -> dict:
    return {"enabled": False, "url": None, "secret": None, "subscriptions": list(ALL_EVENTS)}


def get_webhook_settings(db: Session, merchant_id: str) -> Optional[WebhookSettings]:
    return db.query(WebhookSettings).filter(WebhookSettings.merchant_id == merchant_id).first()


def _validate_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError):
        raise InvalidInput("Invalid webhook URL")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidInput("Invalid webhook URL")


def update_webhook_config(
    db: Session,
    merchant: Merchant,
    url: Optional[str],
    enabled: Optional[bool],
    subscriptions: Optional[list[str]],
) -> WebhookSettings:
    if subscriptions is None:
        subscriptions = list(ALL_EVENTS)

    if any(sub not in ALL_EVENTS for sub in subscriptions):
        raise InvalidInput(f"Invalid subscription. Available events: {', '.join(ALL_EVENTS)}")

    if url:
        _validate_url(url)

    current = get_webhook_settings(db, merchant.id)
    if current is None:
        current = WebhookSettings(merchant_id=merchant.id, enabled=False)
        db.add(current)

    new_url = url if url else current.url
    # A new endpoint never inherits the old endpoint's secret
    if new_url != current.url or not current.secret:
        current.secret = generate_webhook_secret()

    current.url = new_url
    if enabled is not None:
        current.enabled = enabled
    # Keep enum order, drop duplicates
    current.subscriptions = [event for event in ALL_EVENTS if event in subscriptions]

    db.commit()
    db.refresh(current)

    logger.info("Webhook settings updated", extra={"merchant_id": merchant.id, "enabled": current.enabled})
    return current


def list_deliveries(db: Session, merchant: Merchant) -> list[WebhookDelivery]:
    return (
        db.query(WebhookDelivery)
        .options(joinedload(WebhookDelivery.payment))
        .filter(WebhookDelivery.merchant_id == merchant.id)
        .order_by(WebhookDelivery.created_at.desc())
        .limit(DELIVERY_HISTORY_LIMIT)
        .all()
    )


def require_active_settings(db: Session, merchant: Merchant, message: str) -> WebhookSettings:
    hook = get_webhook_settings(db, merchant.id)
    if not hook or not hook.enabled or not hook.url:
        raise WebhookNotConfigured(message)
    return hook


# =========================
# DISPATCHER
# =========================
@dataclass(frozen=True)
class DeliveryJob:
    merchant_id: str
    payment_id: str
    attempt: int = 0


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        retry_delays: tuple[int, ...] = settings.WEBHOOK_RETRY_DELAYS,
        timeout: float = settings.WEBHOOK_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = default_clock,
    ):
        self.session_factory = session_factory
        self.retry_delays = tuple(retry_delays)
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._client: httpx.AsyncClient | None = None
        self._scheduled: set[asyncio.TimerHandle] = set()

    @property
    def max_retries(self) -> int:
        return len(self.retry_delays)

    # ---- Lifecycle ----
    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self):
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        self._worker = asyncio.create_task(self._run())
        logger.info("Webhook dispatcher started")

    async def stop(self):
        for handle in list(self._scheduled):
            handle.cancel()
        self._scheduled.clear()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._client is not None:
            await self._client.aclose()
            self._client = None

        self._loop = None
        logger.info("Webhook dispatcher stopped")

    async def join(self):
        """Wait until the queue is drained and no retry is waiting."""
        while True:
            await self._queue.join()
            if not self._scheduled and self._queue.empty():
                return
            await asyncio.sleep(0.01)

    # ---- Producer side ----
    def enqueue(self, merchant_id: str, payment_id: str, attempt: int = 0) -> None:
        """Queue a delivery. Safe to call from any thread."""
        if self._loop is None or self._queue is None:
            logger.warning(
                "Webhook dispatcher not running, delivery dropped",
                extra={"merchant_id": merchant_id, "payment_id": payment_id},
            )
            return

        job = DeliveryJob(merchant_id, payment_id, attempt)
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is self._loop:
            self._queue.put_nowait(job)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, job)

    def _schedule(self, job: DeliveryJob, delay: float) -> None:
        handle: asyncio.TimerHandle | None = None

        def fire():
            self._scheduled.discard(handle)
            self._queue.put_nowait(job)

        handle = self._loop.call_later(delay, fire)
        self._scheduled.add(handle)

    # ---- Consumer side ----
    async def _run(self):
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception:
                logger.exception(
                    "Webhook job crashed",
                    extra={"payment_id": job.payment_id, "attempt": job.attempt + 1},
                )
            finally:
                self._queue.task_done()

    def _load_payment(self, job: DeliveryJob) -> tuple[Session, Optional[Payment]]:
        db = self.session_factory()
        try:
            return db, db.get(Payment, job.payment_id)
        except Exception:
            db.close()
            raise

    async def process(self, job: DeliveryJob) -> Optional[WebhookDelivery]:
        """Run one attempt for a job and schedule the next one on failure."""
        db, payment = await run_in_threadpool(self._load_payment, job)
        try:
            if payment is None:
                logger.warning("Webhook job for unknown payment", extra={"payment_id": job.payment_id})
                return None
            delivery = await self.deliver(db, job.merchant_id, payment, job.attempt)
            failed = delivery is not None and delivery.status == DeliveryStatus.FAILED.value
        finally:
            db.close()

        if failed and job.attempt < self.max_retries:
            delay = self.retry_delays[job.attempt]
            logger.info(
                "Webhook delivery failed, retry scheduled",
                extra={"payment_id": job.payment_id, "attempt": job.attempt + 1, "delay": delay},
            )
            self._schedule(DeliveryJob(job.merchant_id, job.payment_id, job.attempt + 1), delay)
        elif failed:
            logger.warning(
                "Webhook delivery gave up",
                extra={"payment_id": job.payment_id, "attempts": job.attempt + 1},
            )

        return delivery

    async def _post(self, url: str, body: bytes, headers: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, content=body, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(url, content=body, headers=headers)

    def _prepare(self, db: Session, merchant_id: str, payment: Payment) -> Optional[tuple[str, str, bytes, dict]]:
        hook = get_webhook_settings(db, merchant_id)
        event = event_for(payment)
        if not hook or not hook.enabled or not hook.url or not hook.secret:
            return None
        if event not in (hook.subscriptions or []):
            return None

        payload = build_payload(payment, self.clock.now())
        body = serialize_payload(payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(body, hook.secret),
            TIMESTAMP_HEADER: payload["timestamp"],
        }
        return hook.url, event, body, headers

    def _record(self, db: Session, delivery: WebhookDelivery) -> WebhookDelivery:
        db.add(delivery)
        db.commit()
        db.refresh(delivery)
        return delivery

    async def deliver(
        self,
        db: Session,
        merchant_id: str,
        payment: Payment,
        attempt: int = 0,
        record_payment: bool = True,
    ) -> Optional[WebhookDelivery]:
        """
        Send one signed POST and log it. Returns None when the merchant
        has nothing configured for this event.

        Session work runs in the threadpool; only the HTTP call is awaited
        on the loop.
        """
        prepared = await run_in_threadpool(self._prepare, db, merchant_id, payment)
        if prepared is None:
            return None
        url, event, body, headers = prepared

        status = DeliveryStatus.FAILED.value
        status_code = None
        error = None
        try:
            response = await self._post(url, body, headers)
            status_code = response.status_code
            if response.is_success:
                status = DeliveryStatus.SUCCESS.value
            else:
                error = f"Endpoint responded with status {response.status_code}"
        except httpx.TimeoutException:
            error = "Webhook endpoint timed out"
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__

        delivery = WebhookDelivery(
            merchant_id=merchant_id,
            payment_id=payment.id if record_payment else None,
            event=event,
            status=status,
            status_code=status_code,
            error=error,
            attempts=attempt + 1,
            created_at=self.clock.now(),
        )
        delivery = await run_in_threadpool(self._record, db, delivery)

        log = logger.info if status == DeliveryStatus.SUCCESS.value else logger.warning
        log(
            "Webhook delivery attempt",
            extra={
                "merchant_id": merchant_id,
                "payment_id": payment.id,
                "status": status,
                "status_code": status_code,
                "attempt": attempt + 1,
            },
        )
        return delivery


webhook_dispatcher = WebhookDispatcher()


def get_dispatcher() -> WebhookDispatcher:
    return webhook_dispatcher


# =========================
# MERCHANT OPERATIONS
# =========================
def retry_delivery(db: Session, merchant: Merchant, delivery_id: str, dispatcher: WebhookDispatcher) -> WebhookDelivery:
    delivery = db.query(WebhookDelivery).filter(WebhookDelivery.id == delivery_id).first()
    if not delivery:
        raise DeliveryNotFound()

    if delivery.merchant_id != merchant.id:
        raise Forbidden()

    if delivery.status == DeliveryStatus.SUCCESS.value:
        raise Conflict("Cannot retry a successful delivery")

    require_active_settings(db, merchant, "Webhook is not configured")

    if delivery.payment_id is None:
        raise Conflict("Test deliveries cannot be retried")

    dispatcher.enqueue(merchant.id, delivery.payment_id)
    logger.info("Webhook retry queued", extra={"delivery_id": delivery.id, "payment_id": delivery.payment_id})
    return delivery


async def send_test_webhook(db: Session, merchant: Merchant, dispatcher: WebhookDispatcher) -> Optional[WebhookDelivery]:
    """One synchronous attempt with a throwaway completed payment."""
    await run_in_threadpool(
        require_active_settings, db, merchant, "Webhook is not configured. Please enable webhooks and set a URL."
    )

    now = dispatcher.clock.now()
    stamp = uuid.uuid4().hex[:12]
    test_payment = Payment(
        id=f"test-{stamp}",
        merchant_id=merchant.id,
        intent_id=f"test-{stamp}",
        transaction_id=f"test-{stamp}",
        amount=100,
        status=PaymentStatus.COMPLETED.value,
        verification_data={"test": True, "timestamp": _iso(now)},
        created_at=now,
    )
    return await dispatcher.deliver(db, merchant.id, test_payment, record_payment=False)
