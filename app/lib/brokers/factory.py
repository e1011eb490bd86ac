# backend/app/lib/brokers/factory.py
import logging
from typing import Dict

import httpx

from app.core.config import Settings
from app.lib.brokers.base import BrokerGateway
from app.lib.brokers.capital import CapitalComGateway
from app.lib.brokers.mt5 import MT5Gateway

logger = logging.getLogger(__name__)


def build_gateways(settings: Settings, client: httpx.AsyncClient) -> Dict[str, BrokerGateway]:
    """
    Instantiates one gateway per supported platform, keyed by platform name.
    """
    ttl_seconds = settings.SESSION_TTL_HOURS * 3600

    capital = CapitalComGateway(
        client=client,
        api_key=settings.CAPITAL_COM_API_KEY,
        base_url=settings.capital_com_base_url,
        session_ttl_seconds=ttl_seconds,
    )

    gateways: Dict[str, BrokerGateway] = {capital.platform: capital}

    if not settings.METAAPI_TOKEN:
        logger.warning("METAAPI_TOKEN is not configured; MT5 routes are disabled.")
        return gateways

    # The SDK is only needed once a real MT5 gateway is built
    from app.lib.brokers.metaapi import MetaApiTerminalProvider

    mt5 = MT5Gateway(
        provider=MetaApiTerminalProvider(settings.METAAPI_TOKEN),
        session_ttl_seconds=ttl_seconds,
        deploy_timeout_seconds=settings.MT5_DEPLOY_TIMEOUT_SECONDS,
        magic=settings.MT5_MAGIC,
        account_type=settings.MT5_ACCOUNT_TYPE,
    )
    gateways[mt5.platform] = mt5
    return gateways
