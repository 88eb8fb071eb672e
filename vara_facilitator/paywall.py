import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from vara_facilitator.client import FacilitatorClient
from vara_facilitator.encoding import decode_payment_header, safe_base64_encode
from vara_facilitator.responses import Rejected
from vara_facilitator.schemas import (
    NATIVE_ASSET,
    VALID_VARA_NETWORKS,
    X402_SCHEME,
    X402_VERSION,
    PaymentPayload,
    PaymentRequiredResponse,
    PaymentRequirements,
)

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "/api/protected/"


@dataclass
class PaymentOption:
    price: str
    network: str
    asset: str = NATIVE_ASSET
    description: str = ""
    extra: Optional[dict[str, Any]] = None


def find_matching_requirements(
    accepts: list[PaymentRequirements], payment: PaymentPayload
) -> Optional[PaymentRequirements]:
    for requirements in accepts:
        if (
            requirements.scheme == payment.scheme
            and requirements.network == payment.network
            and requirements.asset == payment.asset
        ):
            return requirements
    return None


def require_payment(
    pay_to: str,
    options: list[PaymentOption],
    facilitator_url: str,
    path_prefix: str = PROTECTED_PREFIX,
    mime_type: str = "application/json",
    max_timeout_seconds: int = 60,
):
    """Generate a FastAPI middleware that gates every path under a prefix.

    Args:
        pay_to (str): Vara address receiving the payments
        options (list[PaymentOption]): Accepted ways to pay, one requirement each
        facilitator_url (str): Base URL of the facilitator's verify/settle endpoints
        path_prefix (str, optional): Paths starting with this are gated
        mime_type (str, optional): MIME type of the gated resources
        max_timeout_seconds (int, optional): Time a client has to pay

    Returns:
        Callable: middleware that answers 402 until a payment verifies, and
        settles it once the route produced a successful response
    """
    for option in options:
        if option.network not in VALID_VARA_NETWORKS:
            raise ValueError(
                f"Unsupported network: {option.network}. Must be one of: {VALID_VARA_NETWORKS}"
            )
        try:
            int(option.price)
        except ValueError:
            raise ValueError(f"Invalid price: {option.price}. Must be an atomic integer amount")

    facilitator = FacilitatorClient(facilitator_url)

    async def middleware(request: Request, call_next: Callable):
        if not request.url.path.startswith(path_prefix):
            return await call_next(request)

        logger.info(f"[Middleware] {request.method} {request.url.path}")

        accepts = [
            PaymentRequirements(
                scheme=X402_SCHEME,
                network=option.network,
                asset=option.asset,
                max_amount_required=option.price,
                pay_to=pay_to,
                resource=str(request.url),
                description=option.description,
                mime_type=mime_type,
                max_timeout_seconds=max_timeout_seconds,
                extra=option.extra,
            )
            for option in options
        ]

        def x402_response(error: str):
            body = PaymentRequiredResponse(x402_version=X402_VERSION, accepts=accepts, error=error)
            return JSONResponse(
                content=body.model_dump(by_alias=True, exclude_none=True), status_code=402
            )

        payment_header = request.headers.get("X-PAYMENT", "")
        if not payment_header:
            return x402_response("No X-PAYMENT header provided")

        payment = decode_payment_header(payment_header)
        if isinstance(payment, Rejected):
            return x402_response(payment.reason)

        selected = find_matching_requirements(accepts, payment)
        if selected is None:
            return x402_response("No matching payment requirements found")

        verify_response = await facilitator.verify(payment_header, selected)
        if not verify_response.is_valid:
            return x402_response(
                f"Invalid payment: {verify_response.invalid_reason or 'Unknown error'}"
            )

        response = await call_next(request)

        # Nothing to charge for if the route failed
        if response.status_code < 200 or response.status_code >= 300:
            return response

        settle_response = await facilitator.settle(payment_header, selected)
        if not settle_response.success:
            return x402_response(f"Settle failed: {settle_response.error or 'Unknown error'}")

        response.headers["X-PAYMENT-RESPONSE"] = safe_base64_encode(
            settle_response.model_dump_json(by_alias=True)
        )
        return response

    return middleware
