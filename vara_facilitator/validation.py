"""Ordered validation gates shared by the verify and settle endpoints.

Each gate returns None to let the request proceed or a Rejected carrying the
reason reported to the caller. Callers run them in order and stop at the
first rejection, so the reported reason is reproducible.

Request fields arrive untyped: the version gate must see whatever was sent,
and a missing network is a gate rejection, not a schema error.
"""

import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from vara_facilitator.responses import Rejected
from vara_facilitator.schemas import (
    VALID_VARA_NETWORKS,
    X402_SCHEME,
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
)

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing paymentHeader or paymentRequirements"
MISSING_SIGNATURE_OR_TRANSACTION = "Invalid payload: missing signature or transaction"


def describe_errors(errors: list[dict], prefix: tuple = ()) -> str:
    """Flatten pydantic errors into `loc.path: message` pairs."""
    return "; ".join(
        f"{'.'.join(str(part) for part in (*prefix, *error['loc']))}: {error['msg']}"
        for error in errors
    )


def check_version(x402_version: Any) -> Optional[Rejected]:
    # bool is an int subclass, but JSON true is not version 1
    if isinstance(x402_version, bool) or x402_version != X402_VERSION:
        return Rejected(f"Unsupported x402 version: {x402_version}")
    return None


def check_required_fields(payment_header: Any, payment_requirements: Any) -> Optional[Rejected]:
    if not payment_header or payment_requirements is None:
        return Rejected(MISSING_FIELDS, status_code=400)
    return None


def check_scheme(scheme: Any) -> Optional[Rejected]:
    if scheme != X402_SCHEME:
        return Rejected(f"Unsupported scheme: {scheme}")
    return None


def check_network(network: Any) -> Optional[Rejected]:
    if not network or network not in VALID_VARA_NETWORKS:
        return Rejected(
            f"Invalid Vara network: {network}. Expected one of {','.join(VALID_VARA_NETWORKS)}"
        )
    return None


def parse_requirements(raw: Any) -> Union[PaymentRequirements, Rejected]:
    """Validate the rest of paymentRequirements once scheme and network passed."""
    try:
        return PaymentRequirements.model_validate(raw)
    except ValidationError as e:
        details = describe_errors(e.errors(), prefix=("body", "paymentRequirements"))
        logger.warning(f"Malformed paymentRequirements: {details}")
        return Rejected(f"Invalid request body: {details}", status_code=400)


def check_payload_matches(
    requirements: PaymentRequirements, payment: PaymentPayload, check_asset: bool
) -> Optional[Rejected]:
    """Cross-check the decoded payload against the stated requirements.

    Comparison is exact; no normalisation of case or format is applied.
    """
    if payment.scheme != requirements.scheme:
        return Rejected(f"Scheme mismatch: expected {requirements.scheme}, got {payment.scheme}")

    if payment.network != requirements.network:
        return Rejected(
            f"Network mismatch: expected {requirements.network}, got {payment.network}"
        )

    if check_asset and payment.asset != requirements.asset:
        return Rejected(f"Asset mismatch: expected {requirements.asset}, got {payment.asset}")

    return None


def check_balance(balance: int, amount: int) -> Optional[Rejected]:
    if balance < amount:
        return Rejected(f"Insufficient asset balance: expected {amount}, got {balance}")
    return None


def check_signature_and_transaction(payment: PaymentPayload) -> Optional[Rejected]:
    payload = payment.payload
    signature = payload.signature if payload else None
    transaction = payload.transaction if payload else None

    logger.info(f"payload.signature exists: {bool(signature)}")
    logger.info(f"payload.transaction exists: {transaction is not None}")

    if not signature or transaction is None:
        logger.warning(
            f"Missing signature or transaction "
            f"(signature: {'present' if signature else 'MISSING'}, "
            f"transaction: {'present' if transaction is not None else 'MISSING'})"
        )
        return Rejected(MISSING_SIGNATURE_OR_TRANSACTION)

    return None
