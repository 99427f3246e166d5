# Overview: Permission codes used by the POS core and the helper that checks them.

"""
Permission model

Users carry a flat list of capability codes. The "admin" code is a
superuser grant and passes every check.

Codes:
- EDIT_PRICE: override the unit price on a cart line
- PROCESS_RETURNS: open return-mode carts / create return invoices
- DELETE_TRANSACTIONS: delete manual ledger entries
- VOID_INVOICES: void (reverse) and delete invoices
- MANAGE_ACCOUNTS: edit the chart of accounts
- MANAGE_CATALOG: create/update catalog, partner and settings records
- MANAGE_TRANSFERS: create/update/delete stock transfers
"""

ADMIN = "admin"
EDIT_PRICE = "edit_price"
PROCESS_RETURNS = "process_returns"
DELETE_TRANSACTIONS = "delete_transactions"
VOID_INVOICES = "void_invoices"
MANAGE_ACCOUNTS = "manage_accounts"
MANAGE_CATALOG = "manage_catalog"
MANAGE_TRANSFERS = "manage_transfers"

ALL_PERMISSIONS = [
    ADMIN,
    EDIT_PRICE,
    PROCESS_RETURNS,
    DELETE_TRANSACTIONS,
    VOID_INVOICES,
    MANAGE_ACCOUNTS,
    MANAGE_CATALOG,
    MANAGE_TRANSFERS,
]


def has_permission(user, code: str) -> bool:
    if user is None or not getattr(user, "is_active", False):
        return False
    granted = set(user.permissions or [])
    return ADMIN in granted or code in granted
