"""Vara chain access for the facilitator.

`VaraApi` wraps one `SubstrateInterface` connection and exposes the three
capabilities the endpoints delegate to: balance query, signature
verification and settlement. Connections are handed out per network by
`VaraApiProvider.acquire`, which keeps a few idle ones around for reuse.

substrate-interface is synchronous, so every call is pushed to a worker
thread to keep the event loop free.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from scalecodec.base import ScaleBytes
from substrateinterface import Keypair, KeypairType, SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException
from substrateinterface.utils.ss58 import ss58_decode

from vara_facilitator.config import CHAIN_POOL_SIZE, CHAIN_TIMEOUT_SECONDS, RPC_URLS
from vara_facilitator.schemas import NATIVE_ASSET, PaymentPayload, VaraTransaction

logger = logging.getLogger(__name__)

VARA_SS58_FORMAT = 137

# Upper bound on gas for read-only program queries
QUERY_GAS_LIMIT = 250_000_000_000

# Leading type byte of a polkadot-js MultiSignature
SIGNATURE_TYPES = {
    0: KeypairType.ED25519,
    1: KeypairType.SR25519,
    2: KeypairType.ECDSA,
}

INVALID_TRANSACTION_ENCODING = "Invalid transaction encoding"


class ChainTimeoutError(Exception):
    pass


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    invalid_reason: Optional[str] = None


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    tx_hash: Optional[str] = None
    message: Optional[str] = None


async def bounded(awaitable: Awaitable, timeout: float):
    """Await with a deadline, turning expiry into a ChainTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise ChainTimeoutError(f"Chain request timed out after {timeout:g}s") from None


def is_native_asset(asset: Optional[str]) -> bool:
    return not asset or asset == NATIVE_ASSET


def _to_int(value: Union[int, str, None]) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def _split_signature(signature: str) -> tuple[bytes, KeypairType]:
    """Strip the MultiSignature type byte if present and map it to a key type."""
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if (len(raw) == 65 and raw[0] in (0, 1)) or (len(raw) == 66 and raw[0] == 2):
        return raw[1:], SIGNATURE_TYPES[raw[0]]
    return raw, KeypairType.SR25519


def _error_message(error: SubstrateRequestException) -> str:
    detail = error.args[0] if error.args else error
    if isinstance(detail, dict):
        message = str(detail.get("message", ""))
        data = detail.get("data")
        return f"{message}: {data}" if data else message or str(detail)
    return str(detail)


class VaraApi:
    def __init__(self, network: str, substrate: SubstrateInterface):
        self.network = network
        self.substrate = substrate

    @classmethod
    def connect(cls, network: str) -> "VaraApi":
        rpc_url = RPC_URLS.get(network)
        if not rpc_url:
            raise ValueError(f"No RPC URL configured for network {network}")
        logger.info(f"Connecting to {network} at {rpc_url}")
        return cls(network, SubstrateInterface(url=rpc_url, ss58_format=VARA_SS58_FORMAT))

    async def balance_of(self, address: str, asset: Optional[str]) -> int:
        return await asyncio.to_thread(self._balance_of, address, asset)

    async def verify(self, payment: PaymentPayload) -> VerificationResult:
        return await asyncio.to_thread(self._verify, payment)

    async def settle(
        self, payment: PaymentPayload, wait_for_finalization: bool = False
    ) -> SettlementResult:
        return await asyncio.to_thread(self._settle, payment, wait_for_finalization)

    def close(self):
        self.substrate.close()

    def _balance_of(self, address: str, asset: Optional[str]) -> int:
        if is_native_asset(asset):
            account = self.substrate.query("System", "Account", [address])
            return int(account.value["data"]["free"])

        # VFT program: ask the program for Vft/BalanceOf(actor) without sending a message
        actor_id = bytes.fromhex(ss58_decode(address))
        prefix = self._scale_str("Vft") + self._scale_str("BalanceOf")
        response = self.substrate.rpc_request(
            "gear_calculateReplyForHandle",
            ["0x" + actor_id.hex(), asset, "0x" + (prefix + actor_id).hex(), QUERY_GAS_LIMIT, 0],
        )
        if "error" in response:
            raise SubstrateRequestException(response["error"])

        reply = response["result"]
        if "Success" not in reply.get("code", {}):
            raise SubstrateRequestException(f"Balance query for {asset} failed: {reply.get('code')}")

        data = bytes.fromhex(reply["payload"].removeprefix("0x"))
        return int.from_bytes(data[len(prefix):len(prefix) + 32], "little")

    def _verify(self, payment: PaymentPayload) -> VerificationResult:
        transaction = payment.payload.transaction
        if not transaction.address or not transaction.method:
            return VerificationResult(False, "Invalid transaction: missing address or method")

        try:
            signature, crypto_type = _split_signature(payment.payload.signature)
        except ValueError:
            return VerificationResult(False, "Invalid signature encoding")

        try:
            keypair = Keypair(ss58_address=transaction.address, crypto_type=crypto_type)
        except ValueError:
            return VerificationResult(False, f"Invalid payer address: {transaction.address}")

        try:
            signing = self._signing_fields(transaction)
        except ValueError as e:
            logger.warning(f"Undecodable transaction from {transaction.address}: {e}")
            return VerificationResult(False, INVALID_TRANSACTION_ENCODING)

        signature_payload = self.substrate.generate_signature_payload(**signing)

        if not keypair.verify(signature_payload, signature):
            return VerificationResult(False, "Invalid signature")

        return VerificationResult(True)

    def _settle(self, payment: PaymentPayload, wait_for_finalization: bool) -> SettlementResult:
        transaction = payment.payload.transaction
        if not transaction.address or not transaction.method:
            return SettlementResult(False, message="Invalid transaction: missing address or method")

        try:
            signature, crypto_type = _split_signature(payment.payload.signature)
            keypair = Keypair(ss58_address=transaction.address, crypto_type=crypto_type)
        except ValueError as e:
            return SettlementResult(False, message=f"Invalid signature or payer address: {e}")

        try:
            signing = self._signing_fields(transaction)
        except ValueError as e:
            logger.warning(f"Undecodable transaction from {transaction.address}: {e}")
            return SettlementResult(False, message=INVALID_TRANSACTION_ENCODING)

        extrinsic = self.substrate.create_signed_extrinsic(
            keypair=keypair, signature=signature, **signing
        )

        try:
            receipt = self.substrate.submit_extrinsic(
                extrinsic,
                wait_for_inclusion=wait_for_finalization,
                wait_for_finalization=wait_for_finalization,
            )
        except SubstrateRequestException as e:
            return SettlementResult(success=False, message=_error_message(e))

        if wait_for_finalization and not receipt.is_success:
            return SettlementResult(
                success=False, tx_hash=receipt.extrinsic_hash, message=str(receipt.error_message)
            )

        return SettlementResult(success=True, tx_hash=receipt.extrinsic_hash)

    def _signing_fields(self, transaction: VaraTransaction) -> dict:
        """Rebuild call, era, nonce and tip from the client's hex fields.

        Raises:
            ValueError: a field is not valid hex or a number, or the call does
                not decode against the runtime metadata
        """
        return {
            "call": self._decode_call(transaction),
            "era": self._era(transaction),
            "nonce": _to_int(transaction.nonce),
            "tip": _to_int(transaction.tip),
        }

    def _decode_call(self, transaction: VaraTransaction):
        call = self.substrate.create_scale_object("Call", data=ScaleBytes(transaction.method))
        call.decode()
        return call

    def _era(self, transaction: VaraTransaction) -> Union[str, dict]:
        if not transaction.era or transaction.era in ("0x00", "00"):
            return "00"
        era = self.substrate.create_scale_object("Era", data=ScaleBytes(transaction.era))
        period, _phase = era.decode()
        return {"period": period, "current": _to_int(transaction.block_number)}

    def _scale_str(self, value: str) -> bytes:
        return bytes(self.substrate.create_scale_object("Str").encode(value).data)


class VaraApiProvider:
    """Hands out chain handles per network, reusing idle connections."""

    def __init__(
        self,
        connect: Callable[[str], Any] = VaraApi.connect,
        pool_size: int = CHAIN_POOL_SIZE,
        timeout: float = CHAIN_TIMEOUT_SECONDS,
    ):
        self._connect = connect
        self._pool_size = pool_size
        self.timeout = timeout
        self._idle: dict[str, list] = {}

    @asynccontextmanager
    async def acquire(self, network: str):
        idle = self._idle.setdefault(network, [])
        if idle:
            api = idle.pop()
        else:
            api = await bounded(asyncio.to_thread(self._connect, network), self.timeout)

        try:
            yield api
        except BaseException:
            # State of a connection that saw a failure is unknown
            api.close()
            raise

        if len(idle) < self._pool_size:
            idle.append(api)
        else:
            api.close()

    def close(self):
        for apis in self._idle.values():
            for api in apis:
                api.close()
        self._idle.clear()
