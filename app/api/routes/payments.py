from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_issuer, get_reconciler, require_admin
from app.api.rate_limit import payment_rate_limit
from app.schemas.payments import CreatePaymentIn, PaymentOut
from app.services.payments.issuer import InvoiceIssuer
from app.services.payments.reconciler import PaymentReconciler
from app.storage.base import PAYMENT_PENDING


router = APIRouter(prefix="/payment", tags=["payments"], dependencies=[Depends(payment_rate_limit)])

LIST_LIMIT_MAX = 1000


@router.post("", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def create_payment(
    body: CreatePaymentIn,
    issuer: InvoiceIssuer = Depends(get_issuer),
) -> PaymentOut:
    payment = issuer.issue_invoice(body.pubkey, body.tier_name, body.billing_cycle)
    return PaymentOut.from_record(payment, PAYMENT_PENDING)


@router.get("/{pubkey}/{payment_id}", response_model=PaymentOut)
def get_payment(
    pubkey: str,
    payment_id: str,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> PaymentOut:
    result = reconciler.check_status(payment_id, pubkey)
    return PaymentOut.from_record(result.payment, result.status)


@router.get("", response_model=list[PaymentOut], dependencies=[Depends(require_admin)])
def list_payments(
    limit: int = 100,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> list[PaymentOut]:
    """Admin listing, newest first. Status is derived locally; no settlement lookups."""
    if limit < 1 or limit > LIST_LIMIT_MAX:
        raise HTTPException(400, f"Limit must be between 1 and {LIST_LIMIT_MAX}")
    return [PaymentOut.from_record(r.payment, r.status) for r in reconciler.list_payments(limit)]
