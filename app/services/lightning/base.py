"""
Interfaces of the external Lightning collaborators.
Reconciliation code depends on these, never on the HTTP client directly.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Invoice:
    """Invoice as returned by the settlement service."""
    serialized: str
    payment_hash: str
    amount_sat: int


class RateOracle(ABC):
    @abstractmethod
    def get_usd_btc_rate(self) -> Decimal:
        """USD per 1 BTC. Raises RateUnavailable."""
        raise NotImplementedError


class InvoiceService(ABC):
    @abstractmethod
    def create_invoice(self, amount_sat: int, invoice_id: str, description: str) -> Invoice:
        """Raises SettlementServiceError on any failure or incomplete response."""
        raise NotImplementedError


class SettlementStatusOracle(ABC):
    @abstractmethod
    def is_settled(self, payment_hash: str) -> bool:
        """Raises SettlementStatusError when the answer is unknown."""
        raise NotImplementedError
