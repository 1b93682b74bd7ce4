from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InputError

MISSING_WALLET = "MISSING_WALLET"
MISSING_PARAMETERS = "Missing parameters"

PAID_FIELDS = ("buyer", "tokenAmount", "solTxSignature", "expectedLamports")


class FreeClaimRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    wallet: str = Field(min_length=1)


class PaidClaimRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    buyer: str = Field(min_length=1)
    tokenAmount: int = Field(gt=0)
    solTxSignature: str = Field(min_length=1)
    expectedLamports: int = Field(gt=0)


ClaimRequest = Union[FreeClaimRequest, PaidClaimRequest]


class ClaimResponse(BaseModel):
    tx: str
    lastValidBlockHeight: Optional[int] = None


class ErrorResponse(BaseModel):
    error: str
    message: str


def is_paid_shape(body: Any) -> bool:
    return isinstance(body, dict) and any(k in body for k in PAID_FIELDS)


def parse_free_request(body: Any) -> FreeClaimRequest:
    try:
        return FreeClaimRequest.model_validate(body)
    except ValidationError:
        raise InputError("Missing wallet pubkey", code=MISSING_WALLET)


def parse_paid_request(body: Any) -> PaidClaimRequest:
    try:
        return PaidClaimRequest.model_validate(body)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        detail = f": {', '.join(fields)}" if fields else ""
        raise InputError(f"Missing or invalid parameters{detail}", code=MISSING_PARAMETERS)


def parse_claim_request(body: Any, paid: Optional[bool] = None) -> ClaimRequest:
    """Picks the request variant by shape unless ``paid`` forces one."""
    if paid is None:
        paid = is_paid_shape(body)
    if paid:
        return parse_paid_request(body)
    return parse_free_request(body)
