"""
FastAPI dependencies: stores and services are built per request from the DB
session; HTTP clients to the Lightning service are shared per process.
"""
from functools import lru_cache

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.services.circuit_breaker import get_circuit_breaker
from app.services.entitlements.provisioner import EntitlementProvisioner
from app.services.lightning.client import RateOracleClient, SettlementClient
from app.services.payments.issuer import InvoiceIssuer
from app.services.payments.reconciler import PaymentReconciler
from app.storage.factory import StoreFactory, Stores


@lru_cache(maxsize=1)
def get_rate_oracle() -> RateOracleClient:
    return RateOracleClient(breaker=get_circuit_breaker("rate_oracle"))


@lru_cache(maxsize=1)
def get_settlement_client() -> SettlementClient:
    return SettlementClient(breaker=get_circuit_breaker("settlement"))


def get_stores(db: Session = Depends(get_db)) -> Stores:
    return StoreFactory.create_from_settings(settings, db=db)


def get_issuer(stores: Stores = Depends(get_stores)) -> InvoiceIssuer:
    return InvoiceIssuer(
        payments=stores.payments,
        rates=get_rate_oracle(),
        invoices=get_settlement_client(),
    )


def get_reconciler(stores: Stores = Depends(get_stores)) -> PaymentReconciler:
    # Auto-confirmation is a local testing aid and never active in production.
    auto_after = None if settings.is_production else settings.dev_auto_payment_after_seconds
    return PaymentReconciler(
        payments=stores.payments,
        oracle=get_settlement_client(),
        provisioner=EntitlementProvisioner(stores.accounts),
        dev_auto_payment_after=auto_after,
    )


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="unauthorized")
