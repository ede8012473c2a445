"""Accounts and the admin approval workflow."""

from .schemas import Account, AccountRole, AccountStatus
from .service import AccountService

__all__ = [
    "Account",
    "AccountRole",
    "AccountService",
    "AccountStatus",
]
