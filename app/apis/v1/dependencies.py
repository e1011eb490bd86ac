# backend/app/apis/v1/dependencies.py
from fastapi import Request

from app.core.exception import UpstreamError
from app.lib.brokers.capital import CapitalComGateway
from app.lib.brokers.mt5 import MT5Gateway
from app.schemas import Platform


def _gateway(request: Request, platform: Platform):
    gateways = getattr(request.app.state, "gateways", None) or {}
    gateway = gateways.get(platform.value)
    if gateway is None:
        raise UpstreamError(f"{platform.value} gateway is not configured")
    return gateway

def get_capital_gateway(request: Request) -> CapitalComGateway:
    return _gateway(request, Platform.CAPITAL)

def get_mt5_gateway(request: Request) -> MT5Gateway:
    return _gateway(request, Platform.MT5)
