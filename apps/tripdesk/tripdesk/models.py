from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

KENYAN_PHONE_PATTERN = r"^(\+254|0)[17][0-9]{8}$"


class PaymentStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"


PAYMENT_STATUS_LABELS = {
    PaymentStatus.pending: "Payment Pending",
    PaymentStatus.partial: "Partial Payment",
    PaymentStatus.paid: "Fully Paid",
}


class RegistrationForm(BaseModel):
    full_name: str = Field(min_length=2)
    phone_number: str = Field(pattern=KENYAN_PHONE_PATTERN)
    email: EmailStr
    number_of_guests: int = Field(default=1, ge=1, le=10)
    payment_status: PaymentStatus = PaymentStatus.pending
    amount_paid: float = Field(default=0, ge=0, allow_inf_nan=False)


class DonationForm(BaseModel):
    item_name: str = Field(min_length=2)
    quantity: int = Field(ge=1, le=100)
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ParticipantRecord(BaseModel):
    """Row written on registration; amount is already normalized."""

    full_name: str
    phone_number: str
    email: str
    number_of_guests: int
    payment_status: PaymentStatus
    amount_paid: float
    avatar_url: Optional[str] = None


class ParticipantOut(BaseModel):
    id: str
    full_name: str
    phone_number: str
    email: str
    number_of_guests: int
    payment_status: PaymentStatus
    amount_paid: float = 0
    avatar_url: Optional[str] = None
    created_at: datetime

    @field_validator("amount_paid", mode="before")
    @classmethod
    def _coerce_none_amount(cls, value):
        return 0 if value is None else value

    @field_validator("avatar_url", mode="before")
    @classmethod
    def _blank_avatar(cls, value):
        return value or None

    @property
    def payment_label(self) -> str:
        return PAYMENT_STATUS_LABELS[self.payment_status]


class DonationOut(BaseModel):
    id: str
    participant_id: str
    participant_name: str
    item_name: str
    quantity: int
    description: Optional[str] = None
    created_at: datetime
