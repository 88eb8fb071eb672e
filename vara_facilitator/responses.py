"""Terminal states of the facilitator pipeline and their wire encoding.

Every verify or settle request ends in exactly one `Accepted` or `Rejected`
value. The two `encode_*` functions are the only place those values become
HTTP responses, so each endpoint always answers with its full fixed shape.
"""

from dataclasses import dataclass
from typing import Optional, Union

from fastapi.responses import JSONResponse

from vara_facilitator.schemas import SettleResponse, VerifyResponse


@dataclass(frozen=True)
class Accepted:
    tx_hash: Optional[str] = None
    network_id: Optional[str] = None


@dataclass(frozen=True)
class Rejected:
    reason: str
    status_code: int = 200


Outcome = Union[Accepted, Rejected]


def encode_verify(outcome: Outcome, elapsed_ms: int) -> JSONResponse:
    if isinstance(outcome, Accepted):
        body = VerifyResponse(is_valid=True, invalid_reason=None)
        return JSONResponse(
            content=body.model_dump(by_alias=True),
            headers={"X-Verification-Time": str(elapsed_ms)},
        )

    body = VerifyResponse(is_valid=False, invalid_reason=outcome.reason)
    return JSONResponse(content=body.model_dump(by_alias=True), status_code=outcome.status_code)


def encode_settle(outcome: Outcome, elapsed_ms: int) -> JSONResponse:
    if isinstance(outcome, Accepted):
        body = SettleResponse(
            success=True,
            error=None,
            tx_hash=outcome.tx_hash,
            network_id=outcome.network_id,
        )
        return JSONResponse(
            content=body.model_dump(by_alias=True),
            headers={"X-Settlement-Time": str(elapsed_ms)},
        )

    body = SettleResponse(success=False, error=outcome.reason, tx_hash=None, network_id=None)
    return JSONResponse(content=body.model_dump(by_alias=True), status_code=outcome.status_code)
