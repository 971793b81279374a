"""Controller layer for monthly billing and M-Pesa payments."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from hostel.controllers.dependencies import (
    get_payment_service,
    get_student_context,
    workflow_http_error,
)
from hostel.domain.charges import Invoice
from hostel.domain.errors import WorkflowError
from hostel.domain.models import Payment, RequestContext
from hostel.services.payment_service import PaymentWorkflowService
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["payments"])


class QuoteRequest(BaseModel):
    services: list[str] = Field(min_length=1)

    @field_validator("services")
    @classmethod
    def validate_services(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("services must contain at least one payment type")
        return cleaned


class PayRequest(QuoteRequest):
    phone_number: str = Field(min_length=9, max_length=20)


class ChargeRow(BaseModel):
    id: str
    name: str
    amount: float = Field(ge=0.0)


class QuoteResponse(BaseModel):
    month: str
    charges: list[ChargeRow]
    total: float = Field(ge=0.0)
    description: str
    reference_number: str


class PaymentRow(BaseModel):
    id: int = Field(gt=0)
    amount: float
    status: str
    payment_date: str
    payment_method: str
    reference_number: str
    month: str
    transaction_code: Optional[str] = None


class PayResponse(BaseModel):
    outcome: str
    message: str
    payment: PaymentRow


class PaymentListResponse(BaseModel):
    payments: list[PaymentRow]


def _quote_response(invoice: Invoice) -> QuoteResponse:
    return QuoteResponse(
        month=invoice.month,
        charges=[
            ChargeRow(id=charge.id, name=charge.name, amount=charge.amount)
            for charge in invoice.charges
        ],
        total=invoice.total,
        description=invoice.description,
        reference_number=invoice.reference_number,
    )


def payment_row(payment: Payment) -> PaymentRow:
    return PaymentRow(
        id=payment.id,
        amount=payment.amount,
        status=payment.status,
        payment_date=payment.payment_date,
        payment_method=payment.payment_method,
        reference_number=payment.reference_number,
        month=payment.month,
        transaction_code=payment.transaction_code,
    )


@router.post("/payments/quote", response_model=QuoteResponse, status_code=status.HTTP_200_OK)
async def quote(
    payload: QuoteRequest,
    context: RequestContext = Depends(get_student_context),
    service: PaymentWorkflowService = Depends(get_payment_service),
) -> QuoteResponse:
    try:
        return _quote_response(service.quote(context, payload.services))
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected quote failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build payment quote",
        ) from exc


# Plain def: polling blocks, so FastAPI runs this in its threadpool.
@router.post("/payments", response_model=PayResponse, status_code=status.HTTP_200_OK)
def pay(
    payload: PayRequest,
    context: RequestContext = Depends(get_student_context),
    service: PaymentWorkflowService = Depends(get_payment_service),
) -> PayResponse:
    """Send an STK push for the selected charges and wait for the gateway outcome.

    Declines and timeouts are reported with a 200 and ``outcome`` set accordingly;
    the payment row is already marked failed at that point.
    """
    try:
        result = service.pay_for_services(context, payload.services, payload.phone_number)
        return PayResponse(
            outcome=result.outcome,
            message=result.message,
            payment=payment_row(result.payment),
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected payment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process payment",
        ) from exc


@router.get("/payments", response_model=PaymentListResponse, status_code=status.HTTP_200_OK)
async def list_payments(
    context: RequestContext = Depends(get_student_context),
    service: PaymentWorkflowService = Depends(get_payment_service),
) -> PaymentListResponse:
    return PaymentListResponse(
        payments=[payment_row(payment) for payment in service.list_payments(context)]
    )
