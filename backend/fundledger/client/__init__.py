from fundledger.client.api import ApiContext, ApiError, FundLedgerClient
from fundledger.client.session import ReconciliationSession, TradeBlotter

__all__ = [
    "ApiContext",
    "ApiError",
    "FundLedgerClient",
    "ReconciliationSession",
    "TradeBlotter",
]
