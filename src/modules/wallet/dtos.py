"""Wallet DTOs (Pydantic v2, immutable)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class WalletTransactionDTO(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    amount: Decimal
    type: str
    status: str
    description: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    created_at: datetime


class WalletDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    balance: Decimal
    currency: str
    transactions: List[WalletTransactionDTO]


class TopUpOrderDTO(BaseModel):
    """What the client needs to open the gateway form for a top-up."""

    model_config = ConfigDict(frozen=True)

    gateway_order_id: str
    amount: Decimal
    currency: str
    key_id: str


class TopUpResultDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    balance: Decimal
    transaction_id: Optional[UUID] = None
    already_processed: bool = False
