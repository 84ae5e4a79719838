"""Pydantic schemas for payment requests.

This module exposes the validation schemas the surrounding layers use to
turn raw caller input into domain values before calling the orchestrator.
"""

import re
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from .domain import PaymentDetails


CARD_RE = re.compile(r"^\d{12,19}$")
TOKEN_RE = re.compile(r"^tok_[A-Za-z0-9]{6,64}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")
CVC_RE = re.compile(r"^\d{3,4}$")


class PaymentDetailsIn(BaseModel):
    """Input schema for a payment instrument.

    Attributes:
        instrument_id: Card number (12-19 digits, spaces and dashes are
            stripped) or a gateway token of the form ``tok_...``.
        expiry: Expiry month/year as ``MM/YY``.
        verification_code: 3 or 4 digit card verification code.
    """

    instrument_id: str = Field(min_length=4, max_length=68)
    expiry: str
    verification_code: str

    @field_validator("instrument_id")
    @classmethod
    def validate_instrument(cls, v: str) -> str:
        """Normalize and validate the instrument identifier.

        Raises:
            ValueError: When the value is neither a card number nor a token.
        """
        if TOKEN_RE.match(v):
            return v
        digits = re.sub(r"[\s-]", "", v)
        if not CARD_RE.match(digits):
            raise ValueError("Invalid instrument")
        return digits

    @field_validator("expiry")
    @classmethod
    def validate_expiry(cls, v: str) -> str:
        if not EXPIRY_RE.match(v):
            raise ValueError("Expiry must be MM/YY")
        return v

    @field_validator("verification_code")
    @classmethod
    def validate_cvc(cls, v: str) -> str:
        if not CVC_RE.match(v):
            raise ValueError("Invalid verification code")
        return v

    def to_domain(self) -> PaymentDetails:
        return PaymentDetails(
            instrument_id=self.instrument_id,
            expiry=self.expiry,
            verification_code=self.verification_code,
        )


class RefundRequestIn(BaseModel):
    """Schema for a refund request.

    Attributes:
        amount: Positive amount with at most two decimal places.
        reason: Non-empty free-text reason recorded in the audit log.
    """

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Reason must not be blank")
        return v2
