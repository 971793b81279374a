"""M-Pesa STK push payment workflow with bounded status polling.

A payment row is only ever moved from ``pending`` to ``completed`` after the
gateway has confirmed the attempt with a receipt code. Explicit declines and
polling timeouts both end in ``failed``; nothing is retried automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from hostel.clients.mpesa_client import PENDING_STATUS, PaymentGateway, PaymentStatus
from hostel.domain.charges import Invoice, build_invoice
from hostel.domain.constraints import normalize_phone_number, validate_payment_amount
from hostel.domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentTimeoutError,
    StoreWriteError,
)
from hostel.domain.models import (
    ALLOCATION_ACTIVE,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    Payment,
    RequestContext,
    RoomAllocation,
)
from hostel.repository.store import Guard, StoreClient
from hostel.services.notification_service import NotificationService
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.config import Settings, get_settings
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

OUTCOME_CONFIRMED = "confirmed"
OUTCOME_DECLINED = "declined"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class PaymentOutcome:
    payment: Payment
    outcome: str
    message: str


class PaymentPoller:
    """Poll the gateway at a fixed interval until a terminal status or the deadline.

    The last sleep is clipped so the final poll lands exactly on the deadline;
    PaymentTimeoutError is raised only once the full window has elapsed.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        clock: Clock,
        interval_seconds: float,
        timeout_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._gateway = gateway
        self._clock = clock
        self._interval = interval_seconds
        self._timeout = timeout_seconds

    def wait(self, checkout_request_id: str) -> PaymentStatus:
        deadline = self._clock.monotonic() + self._timeout
        attempts = 0
        while True:
            remaining = deadline - self._clock.monotonic()
            if remaining <= 0:
                raise PaymentTimeoutError(
                    f"Payment {checkout_request_id} not confirmed after {attempts} poll(s)"
                )
            self._clock.sleep(min(self._interval, remaining))
            attempts += 1
            status = self._poll_once(checkout_request_id)
            if not status.terminal:
                continue
            if not status.success:
                return status
            if status.receipt_code:
                return status
            logger.warning(
                "Gateway reported success for %s without a receipt; still waiting",
                checkout_request_id,
            )

    def _poll_once(self, checkout_request_id: str) -> PaymentStatus:
        try:
            return self._gateway.poll_status(checkout_request_id)
        except GatewayError as exc:
            logger.warning("Status poll for %s failed: %s", checkout_request_id, exc.message)
            return PENDING_STATUS


class PaymentWorkflowService:
    def __init__(
        self,
        store: StoreClient,
        gateway: PaymentGateway,
        notification_service: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._notifications = notification_service or NotificationService(
            store=store,
            settings=self._settings,
            clock=self._clock,
        )

    def _billing_month(self) -> str:
        return self._clock.now().strftime("%Y-%m")

    def _poller(self) -> PaymentPoller:
        return PaymentPoller(
            gateway=self._gateway,
            clock=self._clock,
            interval_seconds=self._settings.payment_poll_interval_seconds,
            timeout_seconds=self._settings.payment_poll_timeout_seconds,
        )

    def quote(self, context: RequestContext, services: Sequence[str]) -> Invoice:
        records = self._store.select(
            "room_allocations",
            {"student_id": context.user_id, "status": ALLOCATION_ACTIVE},
            limit=1,
            relations=("rooms",),
        )
        allocation = RoomAllocation.from_record(records[0]) if records else None
        if allocation is None or allocation.room is None:
            raise NotFoundError("No active room allocation found")
        return build_invoice(
            student_id=context.user_id,
            month=self._billing_month(),
            room_price=allocation.room.price_per_month,
            selected=services,
        )

    def pay_for_services(
        self,
        context: RequestContext,
        services: Sequence[str],
        phone_number: str,
    ) -> PaymentOutcome:
        invoice = self.quote(context, services)
        return self.pay(
            context,
            amount=invoice.total,
            phone_number=phone_number,
            description=invoice.description,
            reference_number=invoice.reference_number,
        )

    def pay(
        self,
        context: RequestContext,
        amount: float,
        phone_number: str,
        description: str,
        reference_number: Optional[str] = None,
    ) -> PaymentOutcome:
        validate_payment_amount(amount)
        phone = normalize_phone_number(phone_number, self._settings.phone_country_code)
        month = self._billing_month()

        if self._store.count(
            "payments",
            {"student_id": context.user_id, "month": month, "status": PAYMENT_COMPLETED},
        ):
            raise ConflictError("Payment for this month has already been made")

        reference = reference_number or (
            f"PAY-{context.user_id[:4]}-{month.replace('-', '')}".upper()
        )
        response = self._gateway.initiate(
            amount,
            phone,
            self._settings.mpesa_account_reference,
            description,
        )
        if not response.accepted:
            raise GatewayError(
                response.response_description
                or "Failed to initiate payment. Please check your phone number."
            )

        try:
            record = self._store.insert(
                "payments",
                {
                    "student_id": context.user_id,
                    "amount": float(amount),
                    "status": PAYMENT_PENDING,
                    "payment_date": self._clock.now().isoformat(),
                    "payment_method": self._settings.payment_method,
                    "reference_number": reference,
                    "month": month,
                    "checkout_request_id": response.checkout_request_id,
                },
            )
        except StoreWriteError as exc:
            raise StoreWriteError(
                "Failed to create payment record. Please try again."
            ) from exc

        payment_id = int(record["id"])
        logger.info(
            "Payment %s pending for student %s (checkout %s)",
            payment_id,
            context.user_id,
            response.checkout_request_id,
        )

        try:
            status = self._poller().wait(str(response.checkout_request_id))
        except PaymentTimeoutError as exc:
            logger.warning("Payment %s timed out: %s", payment_id, exc.message)
            return self._fail(
                payment_id,
                OUTCOME_TIMEOUT,
                "We could not confirm your payment in time. Check your M-Pesa messages "
                f"before trying again and do not resubmit reference {reference}.",
            )
        except Exception:
            logger.exception("Payment %s polling aborted unexpectedly", payment_id)
            self._fail(
                payment_id,
                OUTCOME_ERROR,
                "We could not confirm your payment. Check your M-Pesa messages "
                f"before trying again and do not resubmit reference {reference}.",
            )
            raise

        if status.success:
            return self._complete(payment_id, status.receipt_code, reference)
        return self._fail(
            payment_id,
            OUTCOME_DECLINED,
            f"Payment was not completed ({status.result_description or 'declined'}). "
            "Check your M-Pesa app before starting a new payment.",
        )

    def _complete(
        self,
        payment_id: int,
        receipt_code: Optional[str],
        reference: str,
    ) -> PaymentOutcome:
        if not receipt_code:
            raise GatewayError("Refusing to complete a payment without a gateway receipt")
        try:
            affected = self._store.update(
                "payments",
                payment_id,
                {
                    "status": PAYMENT_COMPLETED,
                    "payment_date": self._clock.now().isoformat(),
                    "transaction_code": receipt_code,
                },
                guard=Guard("status", PAYMENT_PENDING),
            )
        except StoreWriteError as exc:
            logger.exception("Payment %s confirmed by gateway but not recorded", payment_id)
            raise StoreWriteError(
                "Payment may have been successful but status update failed. "
                f"Please contact support with reference: {reference}"
            ) from exc
        if affected == 0:
            raise ConflictError(f"Payment {payment_id} was already finalized")

        payment = Payment.from_record(self._store.get("payments", {"id": payment_id}))
        logger.info("Payment %s completed with receipt %s", payment_id, receipt_code)
        self._notifications.notify_quietly(
            payment.student_id,
            "Payment received",
            f"Payment of KES {payment.amount:,.0f} received. Receipt: {receipt_code}",
            "success",
        )
        return PaymentOutcome(
            payment=payment,
            outcome=OUTCOME_CONFIRMED,
            message=f"Payment completed successfully! Reference: {reference}",
        )

    def _fail(self, payment_id: int, outcome: str, message: str) -> PaymentOutcome:
        affected = self._store.update(
            "payments",
            payment_id,
            {"status": PAYMENT_FAILED, "transaction_code": None},
            guard=Guard("status", PAYMENT_PENDING),
        )
        if affected == 0:
            raise ConflictError(f"Payment {payment_id} was already finalized")

        payment = Payment.from_record(self._store.get("payments", {"id": payment_id}))
        logger.warning("Payment %s marked failed (%s)", payment_id, outcome)
        self._notifications.notify_quietly(
            payment.student_id,
            "Payment failed",
            message,
            "error",
        )
        return PaymentOutcome(payment=payment, outcome=outcome, message=message)

    def list_payments(self, context: RequestContext) -> list[Payment]:
        records = self._store.select(
            "payments",
            {"student_id": context.user_id},
            order_by="payment_date",
            descending=True,
        )
        return [Payment.from_record(record) for record in records]

    def latest_payment(self, context: RequestContext) -> Optional[Payment]:
        records = self._store.select(
            "payments",
            {"student_id": context.user_id},
            order_by="payment_date",
            descending=True,
            limit=1,
        )
        return Payment.from_record(records[0]) if records else None
