"""Shared pytest fixtures and in-memory chain fakes."""

import base64
import json
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from vara_facilitator import main
from vara_facilitator.chain import SettlementResult, VerificationResult

# Well-known development account (Alice)
PAYER = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
PAY_TO = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
TX_HASH = "0x" + "c3" * 32


class FakeApi:
    def __init__(self):
        self.balance = 10**13
        self.verification = VerificationResult(True)
        self.settlement = SettlementResult(True, tx_hash=TX_HASH)
        self.settle_error = None
        self.balance_calls = []
        self.verify_calls = []
        self.settle_calls = []
        self.closed = False

    async def balance_of(self, address, asset):
        self.balance_calls.append((address, asset))
        return self.balance

    async def verify(self, payment):
        self.verify_calls.append(payment)
        return self.verification

    async def settle(self, payment, wait_for_finalization=False):
        self.settle_calls.append((payment, wait_for_finalization))
        if self.settle_error:
            raise self.settle_error
        return self.settlement

    def close(self):
        self.closed = True


class FakeProvider:
    def __init__(self, api):
        self.api = api
        self.error = None
        self.timeout = 5
        self.acquired = []

    @asynccontextmanager
    async def acquire(self, network):
        self.acquired.append(network)
        if self.error:
            raise self.error
        yield self.api

    def close(self):
        pass


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def provider(fake_api, monkeypatch):
    fake = FakeProvider(fake_api)
    monkeypatch.setattr(main.facilitator, "provider", fake)
    return fake


@pytest.fixture
def client(provider):
    return TestClient(main.app)


@pytest.fixture
def payment_data():
    """Decoded X-PAYMENT content for a native-token payment on vara-testnet."""
    return {
        "x402Version": 1,
        "scheme": "exact",
        "network": "vara-testnet",
        "asset": "native",
        "payload": {
            "signature": "0x01" + "ab" * 64,
            "transaction": {
                "address": PAYER,
                "method": "0x0503" + "00" * 32 + "0b00a0724e1809",
                "era": "0x00",
                "nonce": "0x00000003",
                "tip": "0x00000000000000000000000000000000",
                "blockNumber": "0x00000000",
                "specVersion": "0x00000690",
                "transactionVersion": "0x00000001",
            },
        },
    }


@pytest.fixture
def encode_header():
    def encode(data):
        return base64.b64encode(json.dumps(data).encode()).decode()

    return encode


@pytest.fixture
def requirements_data():
    return {
        "scheme": "exact",
        "network": "vara-testnet",
        "asset": "native",
        "maxAmountRequired": "1000000000000",
        "payTo": PAY_TO,
        "resource": "http://localhost:8000/api/protected/weather",
        "description": "Access to weather data API (pay in native token)",
        "mimeType": "application/json",
        "maxTimeoutSeconds": 60,
    }


@pytest.fixture
def request_body(payment_data, encode_header, requirements_data):
    return {
        "x402Version": 1,
        "paymentHeader": encode_header(payment_data),
        "paymentRequirements": requirements_data,
    }
