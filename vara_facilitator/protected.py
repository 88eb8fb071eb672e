from datetime import datetime, timezone

from fastapi import APIRouter

from vara_facilitator.paywall import PaymentOption

router = APIRouter(prefix="/api/protected", tags=["protected"])

WUSDC_ASSET = "0x64f9def5a6da5a2a847812d615151a88f8c508e062654885267339a8bf29e52f"

WEATHER_PAYMENT_OPTIONS = [
    PaymentOption(
        price="1000000000000",
        network="vara-testnet",
        description="Access to weather data API (pay in native token)",
    ),
    PaymentOption(
        price="1000000",
        network="vara-testnet",
        asset=WUSDC_ASSET,
        description="Access to weather data API (pay in VFT token)",
        extra={"name": "WUSDC", "decimals": 6},
    ),
]


@router.get("/weather")
async def weather():
    return {
        "location": "San Francisco",
        "temperature": 18,
        "unit": "celsius",
        "conditions": "Partly cloudy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
