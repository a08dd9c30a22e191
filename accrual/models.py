from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator

# Decimal quantities beyond 10**±1000 are refused before exact conversion
MAX_DECIMAL_EXPONENT = 1000


def to_fraction(value: Any) -> Fraction:
    """Parse a persisted or caller-supplied quantity into an exact Fraction.

    Accepts ints, Decimals, Fractions and numeric strings ("36.5", "2/3").
    Floats are refused so that no amount ever passes through binary
    floating point.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"unsupported quantity type: {type(value).__name__}")
    if isinstance(value, str):
        text = value.strip()
        if "/" in text:
            # p/q syntax carries no exponent, so its size is bounded by the text
            return Fraction(text)
        try:
            value = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"non-finite quantity: {value}")
        # Fraction(Decimal) expands the exponent into an integer
        if value and abs(value.adjusted()) > MAX_DECIMAL_EXPONENT:
            raise ValueError(f"quantity out of range: {value}")
        return Fraction(value)
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    raise TypeError(f"unsupported quantity type: {type(value).__name__}")


class Account(BaseModel):
    balance_cents: int = Field(default=0, ge=0, alias="balanceCents")
    remainder_cents: Fraction = Field(default=Fraction(0), alias="remainderCents")

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    @field_validator("remainder_cents", mode="before")
    @classmethod
    def parse_remainder(cls, value: Any) -> Fraction:
        # JSON numbers arrive as floats; their text form is the intended value
        if isinstance(value, float):
            value = repr(value)
        try:
            remainder = to_fraction(value)
        except (TypeError, ZeroDivisionError) as e:
            raise ValueError(str(e)) from e
        if not 0 <= remainder < 1:
            raise ValueError(f"remainder must be in [0, 1), got {remainder}")
        return remainder

    @field_serializer("remainder_cents")
    def serialize_remainder(self, value: Fraction) -> str:
        return str(value)

    @property
    def total_cents(self) -> Fraction:
        return self.balance_cents + self.remainder_cents


class LedgerSnapshot(BaseModel):
    users: dict[str, Account] = Field(default_factory=dict)
    enrolled: set[str] = Field(default_factory=set)

    @field_serializer("enrolled")
    def serialize_enrolled(self, value: set[str]) -> list[str]:
        return sorted(value)


class UserBalance(BaseModel):
    user_id: str
    balance: Decimal
    display: str
    enrolled: bool

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "184467440737095516",
            "balance": "1.10",
            "display": "1.10",
            "enrolled": True,
        }
    })


class EnrollmentResponse(BaseModel):
    user_id: str
    enrolled: bool
    changed: bool
    message: str


class EnrollmentListResponse(BaseModel):
    user_ids: list[str]
    total_count: int


class HealthResponse(BaseModel):
    status: str
    service: str = "accrual-ledger"
    scheduler: Optional[str] = None
    enrolled_count: int = 0
