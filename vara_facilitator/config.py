import os

from dotenv import load_dotenv

load_dotenv()

# RPC endpoints for each network
RPC_URLS = {
    "vara": os.getenv("VARA_RPC_URL", "wss://rpc.vara.network"),
    "vara-testnet": os.getenv("VARA_TESTNET_RPC_URL", "wss://testnet.vara.network"),
}

CHAIN_TIMEOUT_SECONDS = float(os.getenv("CHAIN_TIMEOUT_SECONDS", "30"))
CHAIN_POOL_SIZE = int(os.getenv("CHAIN_POOL_SIZE", "4"))

PAYMENT_RECIPIENT_ADDRESS = os.getenv("PAYMENT_RECIPIENT_ADDRESS")
FACILITATOR_URL = os.getenv("FACILITATOR_URL", "http://localhost:8000/api/facilitator")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
