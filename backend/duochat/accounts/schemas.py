"""Pydantic schemas for accounts and the approval workflow."""
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class AccountRole(str, Enum):
    """Account role. There is exactly one admin at a time."""
    ADMIN = "admin"
    USER = "user"


class AccountStatus(str, Enum):
    """Approval status. Only approved accounts may chat."""
    PENDING = "pending"
    APPROVED = "approved"


class Account(BaseModel):
    id: str
    name: str
    role: AccountRole = AccountRole.USER
    status: AccountStatus = AccountStatus.PENDING
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RegisterRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=64)


class AccountIdRequest(BaseModel):
    id: str = Field(..., min_length=1)


class TransferAdminRequest(BaseModel):
    currentAdminId: str = Field(..., min_length=1)
    newAdminId: str = Field(..., min_length=1)
