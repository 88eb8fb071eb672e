from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

X402_VERSION = 1
X402_SCHEME = "exact"
VALID_VARA_NETWORKS = ["vara", "vara-testnet"]

# Asset marker for the chain's own token; anything else is a VFT program id
NATIVE_ASSET = "native"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PaymentRequirements(CamelModel):
    scheme: str
    network: str
    asset: Optional[str] = None
    max_amount_required: str
    pay_to: str
    resource: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = None
    max_timeout_seconds: Optional[int] = None
    extra: Optional[dict[str, Any]] = None

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        try:
            amount = int(v)
        except ValueError:
            raise ValueError("maxAmountRequired must be an integer encoded as a string")
        if amount < 0:
            raise ValueError("maxAmountRequired must not be negative")
        return v


class VaraTransaction(CamelModel):
    """Signer payload of an unsubmitted Vara extrinsic, as produced by polkadot-js."""

    model_config = ConfigDict(extra="allow")

    address: Optional[str] = None
    method: Optional[str] = None
    era: Optional[str] = None
    nonce: Optional[Union[int, str]] = None
    tip: Optional[Union[int, str]] = None
    block_number: Optional[Union[int, str]] = None
    block_hash: Optional[str] = None
    genesis_hash: Optional[str] = None
    spec_version: Optional[Union[int, str]] = None
    transaction_version: Optional[Union[int, str]] = None


class VaraPayload(CamelModel):
    signature: Optional[str] = None
    transaction: Optional[VaraTransaction] = None


class PaymentPayload(CamelModel):
    x402_version: Optional[int] = None
    scheme: Optional[str] = None
    network: Optional[str] = None
    asset: Optional[str] = None
    payload: Optional[VaraPayload] = None


class VerifyRequest(CamelModel):
    """Body of a verify call.

    Fields are taken as sent; the ordered gates in `validation` decide
    which problem is reported first.
    """

    x402_version: Any = None
    payment_header: Any = None
    payment_requirements: Any = None


class SettleRequest(CamelModel):
    x402_version: Any = None
    payment_header: Any = None
    payment_requirements: Any = None


class VerifyResponse(CamelModel):
    is_valid: bool
    invalid_reason: Optional[str] = None


class SettleResponse(CamelModel):
    success: bool
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    network_id: Optional[str] = None


class SupportedKind(CamelModel):
    x402_version: int
    scheme: str
    network: str


class SupportedResponse(CamelModel):
    kinds: list[SupportedKind]


class PaymentRequiredResponse(CamelModel):
    x402_version: int
    accepts: list[PaymentRequirements]
    error: str
