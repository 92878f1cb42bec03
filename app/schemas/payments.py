from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.storage.base import PaymentRecord


class CreatePaymentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Missing values fall through to the service and come back as 400, not 422.
    tier_name: str = Field(default="", alias="tierName")
    billing_cycle: str = Field(default="", alias="billingCycle")
    pubkey: str = ""


class PaymentOut(BaseModel):
    id: str
    invoice: str
    status: str
    expires: datetime

    @classmethod
    def from_record(cls, payment: PaymentRecord, status: str) -> "PaymentOut":
        return cls(
            id=payment.id,
            invoice=payment.settlement_invoice,
            status=status,
            expires=payment.expires_at,
        )
