import logging

import httpx

from vara_facilitator.schemas import (
    X402_VERSION,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


class FacilitatorClient:
    """HTTP client for a facilitator's verify and settle endpoints.

    The facilitator answers every outcome, including 4xx/5xx, with its fixed
    response body, so the body is parsed regardless of status code.
    """

    def __init__(self, url: str, timeout: float = 60.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    async def verify(
        self, payment_header: str, requirements: PaymentRequirements
    ) -> VerifyResponse:
        data = await self._post("verify", payment_header, requirements)
        return VerifyResponse.model_validate(data)

    async def settle(
        self, payment_header: str, requirements: PaymentRequirements
    ) -> SettleResponse:
        data = await self._post("settle", payment_header, requirements)
        return SettleResponse.model_validate(data)

    async def _post(
        self, endpoint: str, payment_header: str, requirements: PaymentRequirements
    ) -> dict:
        body = {
            "x402Version": X402_VERSION,
            "paymentHeader": payment_header,
            "paymentRequirements": requirements.model_dump(by_alias=True, exclude_none=True),
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.url}/{endpoint}", json=body)

        logger.info(f"Facilitator {endpoint} responded with {response.status_code}")
        return response.json()
