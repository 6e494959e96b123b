from fundledger.models.config import Bank, Broker, Exchange
from fundledger.models.fund import Fund
from fundledger.models.gl import Account, JournalEntry, JournalLine
from fundledger.models.org import Organization
from fundledger.models.period import ReportingPeriod
from fundledger.models.permission import AuditLog, UserPermissionOverride
from fundledger.models.reconciliation import ReconciliationRecord
from fundledger.models.trade import Trade
from fundledger.models.user import User

__all__ = [
    # Organizational structure
    "Organization",
    "Fund",
    # General Ledger
    "Account",
    "JournalEntry",
    "JournalLine",
    "ReportingPeriod",
    # Trading
    "Trade",
    # Reconciliation
    "ReconciliationRecord",
    # Reference data
    "Bank",
    "Broker",
    "Exchange",
    # Users & RBAC
    "User",
    "UserPermissionOverride",
    "AuditLog",
]
