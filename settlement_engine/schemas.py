"""
Pydantic Schemas for Settlement Intake.

Validate raw request payloads and convert them into the core
dataclasses. Field aliases accept the camelCase wire names.
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .types import InvalidObligationError, Obligation, RecipientPreference


# =============================================================
# OBLIGATION SCHEMAS
# =============================================================

class ObligationIn(BaseModel):
    """A single obligation as submitted."""
    from_party: str = Field(..., alias="from", min_length=1)
    to_party: str = Field(..., alias="to", min_length=1)
    amount: Decimal = Field(..., gt=0)
    unit: str = Field(..., alias="token", min_length=1)
    chain: str = ""
    reference: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("unit", "chain")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower() if value else value

    @model_validator(mode="after")
    def parties_differ(self) -> "ObligationIn":
        if self.from_party == self.to_party:
            raise ValueError("'to' must differ from 'from'")
        return self

    def to_obligation(self) -> Obligation:
        return Obligation(
            from_party=self.from_party,
            to_party=self.to_party,
            amount=self.amount,
            unit=self.unit,
            chain=self.chain,
            reference=self.reference or "",
        )


# =============================================================
# RECIPIENT PREFERENCE SCHEMAS
# =============================================================

class RecipientPreferenceIn(BaseModel):
    """How a creditor wants to be paid."""
    party: str = Field(..., min_length=1)
    receive_unit: str = Field(..., alias="receiveToken", min_length=1)
    receive_chain: str = Field(..., alias="receiveChain", min_length=1)
    receive_address: str = Field(..., alias="receiveAddress", min_length=6)
    memo: Optional[str] = None
    refund_address: Optional[str] = Field(None, alias="refundAddress")

    class Config:
        populate_by_name = True

    @field_validator("receive_unit", "receive_chain")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower()

    def to_preference(self) -> RecipientPreference:
        return RecipientPreference(
            party=self.party,
            receive_unit=self.receive_unit,
            receive_chain=self.receive_chain,
            receive_address=self.receive_address,
            refund_address=self.refund_address or "",
            memo=self.memo or "",
        )


# =============================================================
# SETTLEMENT SCHEMAS
# =============================================================

class SettlementCreate(BaseModel):
    """Schema for creating a settlement."""
    obligations: List[ObligationIn] = Field(..., min_length=1)
    recipient_preferences: List[RecipientPreferenceIn] = Field(
        default_factory=list, alias="recipientPreferences",
    )
    name: Optional[str] = Field(None, max_length=100)
    tags: List[str] = Field(default_factory=list, max_length=10)

    class Config:
        populate_by_name = True

    def to_obligations(self) -> List[Obligation]:
        return [o.to_obligation() for o in self.obligations]

    def to_preferences(self) -> List[RecipientPreference]:
        return [p.to_preference() for p in self.recipient_preferences]


def parse_settlement_request(payload: Mapping[str, Any]) -> SettlementCreate:
    """
    Validate a settlement creation payload.

    Raises:
        InvalidObligationError: With pydantic's first error message
    """
    try:
        return SettlementCreate.model_validate(dict(payload))
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidObligationError(f"{location}: {first.get('msg')}") from e


# =============================================================
# CALLER IP
# =============================================================

def extract_caller_ip(
    headers: Mapping[str, str],
    remote_addr: str = "",
    force_ip: str = "",
) -> str:
    """
    Caller IP to forward to the exchange.

    Order: forced override, x-user-ip, first x-forwarded-for hop,
    then the socket address without an IPv4-mapped prefix.
    """
    if force_ip and force_ip.strip():
        return force_ip.strip()

    lowered: Dict[str, str] = {k.lower(): v for k, v in headers.items()}
    explicit = lowered.get("x-user-ip")
    if explicit:
        return str(explicit).split(",")[0].strip()

    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        return str(forwarded).split(",")[0].strip()

    return (remote_addr or "").replace("::ffff:", "")
