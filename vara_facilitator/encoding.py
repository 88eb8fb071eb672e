import base64
import json
import logging
from typing import Any, Union

from pydantic import ValidationError

from vara_facilitator.responses import Rejected
from vara_facilitator.schemas import PaymentPayload

logger = logging.getLogger(__name__)

INVALID_BASE64 = "Invalid base64 encoding in X-PAYMENT header"
INVALID_JSON = "Invalid JSON in payment payload"


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Encode string or bytes to a base64 string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Decode a base64 string to utf-8 text.

    Accepts the URL-safe alphabet and missing padding, as browser and Node
    clients produce both.

    Raises:
        ValueError: data is not valid base64, or the decoded bytes are not utf-8
    """
    normalized = data.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True).decode("utf-8")


def encode_payment_header(payment: PaymentPayload) -> str:
    """Encode a payment payload the way clients send it in X-PAYMENT."""
    return safe_base64_encode(payment.model_dump_json(by_alias=True, exclude_none=True))


def decode_payment_header(header: Any) -> Union[PaymentPayload, Rejected]:
    """Decode an X-PAYMENT header value into a PaymentPayload.

    Only structure is checked here. A failure is returned as a Rejected
    carrying one of two fixed reasons, one per decoding step.
    """
    if not isinstance(header, str):
        logger.warning(f"Payment header is a {type(header).__name__}, not a string")
        return Rejected(INVALID_BASE64)

    try:
        payload_json = safe_base64_decode(header)
    except ValueError as e:
        logger.warning(f"Failed to decode base64 header: {e}")
        return Rejected(INVALID_BASE64)

    try:
        payload_data = json.loads(payload_json)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON: {e}")
        return Rejected(INVALID_JSON)

    if not isinstance(payload_data, dict):
        logger.warning(f"Payment payload is a JSON {type(payload_data).__name__}, not an object")
        return Rejected(INVALID_JSON)

    try:
        return PaymentPayload.model_validate(payload_data)
    except ValidationError as e:
        logger.warning(f"Payment payload has malformed fields: {e.error_count()} error(s)")
        return Rejected(INVALID_JSON)
