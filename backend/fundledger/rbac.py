"""
RBAC Permission Registry for FundLedger

Defines the canonical role-to-permission mapping.  Per-user overrides are
stored in the database and applied on top of these defaults.

Permission string format: {module}.{resource}.{action}
"""
from __future__ import annotations

# ---------------------------------------------------------------------------
# All permission strings used across the system
# ---------------------------------------------------------------------------

ALL_PERMISSIONS: list[str] = sorted([
    # Organizations & funds
    "org.organizations.view",
    "org.organizations.create",
    "org.funds.view",
    "org.funds.create",
    "org.funds.update",
    # General Ledger
    "gl.accounts.view",
    "gl.accounts.create",
    "gl.accounts.update",
    "gl.journals.view",
    "gl.journals.create",
    "gl.journals.reverse",
    "gl.periods.view",
    "gl.periods.create",
    # Trades
    "trades.view",
    "trades.create",
    "trades.delete",
    # Reconciliation
    "reconciliation.view",
    "reconciliation.reconcile",
    "reconciliation.reopen",
    # Reports
    "reports.financial.view",
    # Reference data
    "config.entities.view",
    "config.entities.manage",
    # Administration
    "admin.users.view",
    "admin.users.create",
    "admin.users.update",
    "admin.users.manage_permissions",
    "admin.audit_log.view",
])


# ---------------------------------------------------------------------------
# Role → Permissions mapping (source of truth)
# ---------------------------------------------------------------------------

_READ_ONLY: set[str] = {
    "org.organizations.view", "org.funds.view",
    "gl.accounts.view", "gl.journals.view", "gl.periods.view",
    "trades.view",
    "reconciliation.view",
    "reports.financial.view",
    "config.entities.view",
}

ROLE_PERMISSIONS: dict[str, set[str]] = {
    # ── System Admin ─────────────────────────────────────────────────────
    # Full access to everything, including users and permissions.
    "system_admin": set(ALL_PERMISSIONS),

    # ── Fund Controller ──────────────────────────────────────────────────
    # All fund data.  Reconciles and reopens accounts, reverses journals.
    "fund_controller": _READ_ONLY | {
        "org.funds.create", "org.funds.update",
        "gl.accounts.create", "gl.accounts.update",
        "gl.journals.create", "gl.journals.reverse",
        "gl.periods.create",
        "trades.create", "trades.delete",
        "reconciliation.reconcile", "reconciliation.reopen",
        "config.entities.manage",
        "admin.audit_log.view",
    },

    # ── Fund Accountant ──────────────────────────────────────────────────
    # Books trades and journals, reconciles.  Cannot reopen.
    "fund_accountant": _READ_ONLY | {
        "gl.accounts.create",
        "gl.journals.create",
        "trades.create", "trades.delete",
        "reconciliation.reconcile",
    },

    # ── Operations ───────────────────────────────────────────────────────
    # Trade capture only.
    "operations": {
        "org.funds.view", "trades.view", "trades.create",
        "reconciliation.view",
    },

    # ── Auditor ──────────────────────────────────────────────────────────
    # Read-only across all funds.  Can view the audit log.
    "auditor": _READ_ONLY | {"admin.audit_log.view"},

    # ── Viewer ───────────────────────────────────────────────────────────
    "viewer": {"org.funds.view", "reports.financial.view"},
}


# ---------------------------------------------------------------------------
# Valid role names
# ---------------------------------------------------------------------------

VALID_ROLES: list[str] = sorted(ROLE_PERMISSIONS.keys())


# ---------------------------------------------------------------------------
# Data scoping: which roles see all funds vs their own
# ---------------------------------------------------------------------------

GLOBAL_SCOPE_ROLES: set[str] = {"system_admin", "fund_controller", "auditor"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_role_permissions(role: str) -> set[str]:
    """Return the base permission set for a role, or empty set if unknown."""
    return ROLE_PERMISSIONS.get(role, set())


_DESCRIPTIONS: dict[str, str] = {
    "org.organizations.view": "View organizations",
    "org.organizations.create": "Create organizations",
    "org.funds.view": "View funds",
    "org.funds.create": "Create funds",
    "org.funds.update": "Edit funds",
    "gl.accounts.view": "View chart of accounts",
    "gl.accounts.create": "Create GL accounts",
    "gl.accounts.update": "Edit GL accounts",
    "gl.journals.view": "View journals",
    "gl.journals.create": "Create manual journals",
    "gl.journals.reverse": "Reverse posted journals",
    "gl.periods.view": "View reporting periods",
    "gl.periods.create": "Create reporting periods",
    "trades.view": "View trades",
    "trades.create": "Book trades",
    "trades.delete": "Delete trades (newest-first only)",
    "reconciliation.view": "View reconciliation status and ledgers",
    "reconciliation.reconcile": "Reconcile GL accounts against statements",
    "reconciliation.reopen": "Reopen reconciled GL accounts",
    "reports.financial.view": "View financial reports (trial balance, balance sheet, P&L, lots)",
    "config.entities.view": "View banks, brokers and exchanges",
    "config.entities.manage": "Create, edit and delete banks, brokers and exchanges",
    "admin.users.view": "View user list",
    "admin.users.create": "Create new users",
    "admin.users.update": "Edit users (role, active, fund)",
    "admin.users.manage_permissions": "Grant/revoke individual permissions",
    "admin.audit_log.view": "View audit log",
}


def permission_description(permission: str) -> str:
    """Return a human-readable description for a permission string."""
    return _DESCRIPTIONS.get(permission, permission)
