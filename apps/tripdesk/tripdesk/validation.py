from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Generic, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from tripdesk.models import DonationForm, RegistrationForm

FormT = TypeVar("FormT", bound=BaseModel)

REGISTRATION_MESSAGES = {
    "full_name": {
        "missing": "Full name is required",
        "string_too_short": "Name must be at least 2 characters",
    },
    "phone_number": {
        "missing": "Phone number is required",
        "string_pattern_mismatch": "Please enter a valid Kenyan phone number",
    },
    "email": {
        "missing": "Email is required",
        "value_error": "Please enter a valid email address",
    },
    "number_of_guests": {
        "missing": "Number of guests is required",
        "int_parsing": "Number of guests must be a whole number",
        "int_from_float": "Number of guests must be a whole number",
        "greater_than_equal": "At least 1 guest is required",
        "less_than_equal": "Maximum 10 guests allowed",
    },
    "payment_status": {
        "missing": "Payment status is required",
        "enum": "Invalid payment status",
    },
    "amount_paid": {
        "missing": "Amount paid is required",
        "float_parsing": "Amount paid must be a number",
        "finite_number": "Amount paid must be a number",
        "greater_than_equal": "Amount paid cannot be negative",
    },
}

DONATION_MESSAGES = {
    "item_name": {
        "missing": "Item name is required",
        "string_too_short": "Item name must be at least 2 characters",
    },
    "quantity": {
        "missing": "Quantity is required",
        "int_parsing": "Quantity must be a whole number",
        "int_from_float": "Quantity must be a whole number",
        "greater_than_equal": "Quantity must be at least 1",
        "less_than_equal": "Maximum 100 items allowed",
    },
    "description": {
        "string_too_long": "Description must be less than 200 characters",
    },
}


@dataclass
class ValidationResult(Generic[FormT]):
    value: Optional[FormT] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.value is not None


def _drop_blank(data: Mapping[str, object]) -> dict:
    # Untouched form inputs arrive as empty strings; treat them as absent.
    return {
        key: value
        for key, value in data.items()
        if not (isinstance(value, str) and not value.strip())
    }


def _validate(model: Type[FormT], data: Mapping[str, object], messages: dict) -> ValidationResult[FormT]:
    try:
        return ValidationResult(value=model.model_validate(_drop_blank(data)))
    except ValidationError as exc:
        errors: Dict[str, str] = {}
        for err in exc.errors():
            name = str(err["loc"][0]) if err["loc"] else "__all__"
            if name in errors:
                continue
            errors[name] = messages.get(name, {}).get(err["type"], err["msg"])
        return ValidationResult(errors=errors)


def validate_registration(data: Mapping[str, object]) -> ValidationResult[RegistrationForm]:
    return _validate(RegistrationForm, data, REGISTRATION_MESSAGES)


def validate_donation(data: Mapping[str, object]) -> ValidationResult[DonationForm]:
    return _validate(DonationForm, data, DONATION_MESSAGES)
