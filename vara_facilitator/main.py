import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError

from vara_facilitator.chain import VaraApiProvider
from vara_facilitator.config import (
    FACILITATOR_URL,
    HOST,
    LOG_LEVEL,
    PAYMENT_RECIPIENT_ADDRESS,
    PORT,
)
from vara_facilitator.facilitator import VaraFacilitator
from vara_facilitator.paywall import require_payment
from vara_facilitator.protected import WEATHER_PAYMENT_OPTIONS
from vara_facilitator.protected import router as protected_router
from vara_facilitator.responses import Rejected, encode_settle, encode_verify
from vara_facilitator.schemas import (
    VALID_VARA_NETWORKS,
    X402_SCHEME,
    X402_VERSION,
    SettleRequest,
    SupportedKind,
    SupportedResponse,
    VerifyRequest,
)
from vara_facilitator.validation import describe_errors

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/facilitator/verify"
SETTLE_PATH = "/api/facilitator/settle"

facilitator = VaraFacilitator(VaraApiProvider())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Vara x402 facilitator for networks: {VALID_VARA_NETWORKS}")
    yield
    facilitator.provider.close()


app = FastAPI(title="Vara x402 Facilitator", lifespan=lifespan)

if PAYMENT_RECIPIENT_ADDRESS:
    app.middleware("http")(
        require_payment(
            pay_to=PAYMENT_RECIPIENT_ADDRESS,
            options=WEATHER_PAYMENT_OPTIONS,
            facilitator_url=FACILITATOR_URL,
        )
    )
    app.include_router(protected_router)
else:
    logger.warning("PAYMENT_RECIPIENT_ADDRESS is not set, protected routes are disabled")


def elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def fault(error: Exception) -> Rejected:
    return Rejected(str(error) or type(error).__name__, status_code=500)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = describe_errors(exc.errors())
    outcome = Rejected(f"Invalid request body: {details}", status_code=400)

    if request.url.path == VERIFY_PATH:
        return encode_verify(outcome, 0)
    if request.url.path == SETTLE_PATH:
        return encode_settle(outcome, 0)
    return await request_validation_exception_handler(request, exc)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Vara x402 Facilitator", "networks": VALID_VARA_NETWORKS}


@app.get("/api/facilitator/supported")
async def supported() -> SupportedResponse:
    kinds = [
        SupportedKind(x402_version=X402_VERSION, scheme=X402_SCHEME, network=network)
        for network in VALID_VARA_NETWORKS
    ]
    return SupportedResponse(kinds=kinds)


@app.post(VERIFY_PATH)
async def verify(request: VerifyRequest):
    """Check a payment against its requirements without submitting it."""
    start = time.perf_counter()
    logger.info(f"POST {VERIFY_PATH}")

    try:
        outcome = await facilitator.verify(request)
    except Exception as e:
        logger.error(f"Error verifying payment: {e}", exc_info=True)
        outcome = fault(e)

    duration = elapsed_ms(start)
    logger.info(f"Verification took {duration}ms: {outcome}")
    return encode_verify(outcome, duration)


@app.post(SETTLE_PATH)
async def settle(request: SettleRequest):
    """Submit a payment to the chain; reports on submission, not finality."""
    start = time.perf_counter()
    logger.info(f"POST {SETTLE_PATH}")

    try:
        outcome = await facilitator.settle(request)
    except Exception as e:
        logger.error(f"Error settling payment: {e}", exc_info=True)
        outcome = fault(e)

    duration = elapsed_ms(start)
    logger.info(f"Settlement took {duration}ms: {outcome}")
    return encode_settle(outcome, duration)


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)
