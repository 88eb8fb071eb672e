import logging
from typing import Any, Optional, Union

from vara_facilitator.chain import ChainTimeoutError, VaraApiProvider, bounded
from vara_facilitator.encoding import decode_payment_header
from vara_facilitator.responses import Accepted, Outcome, Rejected
from vara_facilitator.schemas import (
    PaymentPayload,
    PaymentRequirements,
    SettleRequest,
    VerifyRequest,
)
from vara_facilitator.validation import (
    check_balance,
    check_network,
    check_payload_matches,
    check_required_fields,
    check_scheme,
    check_signature_and_transaction,
    check_version,
    parse_requirements,
)

logger = logging.getLogger(__name__)

# Chain error fragments that mean the transaction was already submitted or
# included. Matched as substrings of free-text error messages, so this list
# breaks silently if the node changes its wording.
DUPLICATE_SUBMISSION_MARKERS = [
    "SEQUENCE_NUMBER_TOO_OLD",
    "INVALID_SEQ_NUMBER",
    "already submitted",
]
TRANSACTION_ALREADY_USED = "Transaction already used"

MISSING_PAYER_ADDRESS = "Invalid payload: missing payer address"


def is_duplicate_submission(message: Optional[str]) -> bool:
    return bool(message) and any(marker in message for marker in DUPLICATE_SUBMISSION_MARKERS)


class VaraFacilitator:
    """Runs the verify and settle pipelines against the Vara chain.

    Both pipelines stop at the first failing gate and return a Rejected;
    only faults nobody anticipated (connection loss, timeouts, bugs) are
    raised to the caller.
    """

    def __init__(self, provider: VaraApiProvider):
        self.provider = provider

    async def verify(self, request: VerifyRequest) -> Outcome:
        self._log_request("Verify", request)

        validated = self._validate(request, check_asset=True)
        if isinstance(validated, Rejected):
            return validated
        requirements, payment = validated

        if payment.payload is None or payment.payload.transaction is None:
            return check_signature_and_transaction(payment)

        address = payment.payload.transaction.address
        if not address:
            return Rejected(MISSING_PAYER_ADDRESS)

        amount = int(requirements.max_amount_required)

        async with self.provider.acquire(requirements.network) as api:
            logger.info("Vara api initialized")

            logger.info("Checking asset balance...")
            balance = await bounded(api.balance_of(address, payment.asset), self.provider.timeout)
            rejection = check_balance(balance, amount)
            if rejection:
                return rejection
            logger.info(f"Sufficient asset balance: {balance}")

            rejection = check_signature_and_transaction(payment)
            if rejection:
                return rejection

            # Recipient and amount inside the transaction are left to the
            # signature verification below.
            result = await bounded(api.verify(payment), self.provider.timeout)

        if not result.is_valid:
            logger.warning(f"Signature verification failed: {result.invalid_reason}")
            return Rejected(result.invalid_reason or "Signature verification failed")

        logger.info("Payment payload is valid")
        return Accepted()

    async def settle(self, request: SettleRequest) -> Outcome:
        self._log_request("Settle", request)

        validated = self._validate(request, check_asset=False)
        if isinstance(validated, Rejected):
            return validated
        requirements, payment = validated

        rejection = check_signature_and_transaction(payment)
        if rejection:
            return rejection

        network = requirements.network

        try:
            async with self.provider.acquire(network) as api:
                logger.info("Vara api initialized")
                result = await bounded(
                    api.settle(payment, wait_for_finalization=False), self.provider.timeout
                )
        except ChainTimeoutError:
            logger.error("Settlement timed out, the extrinsic may still have reached the pool")
            raise
        except Exception as e:
            if is_duplicate_submission(str(e)):
                logger.warning(f"Duplicate submission rejected by chain: {e}")
                return Rejected(TRANSACTION_ALREADY_USED, status_code=409)
            raise

        if not result.success:
            if is_duplicate_submission(result.message):
                logger.warning(f"Duplicate submission rejected by chain: {result.message}")
                return Rejected(TRANSACTION_ALREADY_USED, status_code=409)
            logger.warning(f"Submit transaction failed: {result.message}")
            return Rejected(result.message or "Settlement failed")

        logger.info(f"Payment settled successfully, transaction hash: {result.tx_hash}")
        return Accepted(tx_hash=result.tx_hash, network_id=network)

    def _validate(
        self, request: Union[VerifyRequest, SettleRequest], check_asset: bool
    ) -> Union[tuple[PaymentRequirements, PaymentPayload], Rejected]:
        """Run the local gates, then decode the payment header."""
        raw = request.payment_requirements

        rejection = check_version(request.x402_version) or check_required_fields(
            request.payment_header, raw
        )
        if rejection:
            return rejection

        fields = _fields(raw)
        rejection = check_scheme(fields.get("scheme")) or check_network(fields.get("network"))
        if rejection:
            return rejection

        requirements = parse_requirements(raw)
        if isinstance(requirements, Rejected):
            return requirements

        logger.info(f"Network: {requirements.network}")

        payment = decode_payment_header(request.payment_header)
        if isinstance(payment, Rejected):
            return payment

        logger.info(
            f"Parsed payment payload: x402Version={payment.x402_version}, "
            f"scheme={payment.scheme}, network={payment.network}, asset={payment.asset}, "
            f"hasPayload={payment.payload is not None}"
        )

        rejection = check_payload_matches(requirements, payment, check_asset)
        if rejection:
            return rejection
        return requirements, payment

    @staticmethod
    def _log_request(kind: str, request: Union[VerifyRequest, SettleRequest]):
        fields = _fields(request.payment_requirements)
        header = request.payment_header
        logger.info(
            f"{kind} request: x402Version={request.x402_version}, "
            f"hasPaymentHeader={bool(header)}, "
            f"headerLength={len(header) if isinstance(header, str) else 0}, "
            f"scheme={fields.get('scheme')}, network={fields.get('network')}, "
            f"maxAmountRequired={fields.get('maxAmountRequired')}, "
            f"payTo={fields.get('payTo')}, asset={fields.get('asset')}"
        )


def _fields(raw: Any) -> dict:
    return raw if isinstance(raw, dict) else {}
