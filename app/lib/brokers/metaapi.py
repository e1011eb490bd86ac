# backend/app/lib/brokers/metaapi.py
"""
MetaApi cloud implementation of the terminal capability interface.

Only this module knows the ``metaapi_cloud_sdk`` object model; the MT5 gateway
talks to ``TerminalProvider`` / ``TerminalAccount`` / ``TerminalConnection``.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from metaapi_cloud_sdk import MetaApi

from app.lib.brokers.terminal import TerminalAccount, TerminalConnection, TerminalProvider

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_SECONDS = 120


class MetaApiConnection(TerminalConnection):
    def __init__(self, connection: Any):
        self._connection = connection

    async def get_account_information(self) -> Dict[str, Any]:
        return await self._connection.get_account_information()

    async def get_symbol_price(self, symbol: str) -> Dict[str, Any]:
        return await self._connection.get_symbol_price(symbol)

    async def get_symbol_specification(self, symbol: str) -> Dict[str, Any]:
        return await self._connection.get_symbol_specification(symbol)

    async def get_positions(self) -> List[Dict[str, Any]]:
        return await self._connection.get_positions()

    async def get_history_orders(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        result = await self._connection.get_history_orders_by_time_range(start, end)
        if isinstance(result, dict):
            return result.get("historyOrders") or []
        return result or []

    async def get_history_deals(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        result = await self._connection.get_history_deals_by_time_range(start, end)
        if isinstance(result, dict):
            return result.get("historyDeals") or []
        return result or []

    async def create_market_order(self, symbol, order_type, volume, stop_loss=None, take_profit=None, options=None):
        create = (
            self._connection.create_market_sell_order if order_type == 1
            else self._connection.create_market_buy_order
        )
        return await create(symbol, volume, stop_loss, take_profit, options)

    async def create_pending_order(
        self, symbol, order_type, volume, price, stop_loss=None, take_profit=None, stop_limit_price=None, options=None
    ):
        c = self._connection
        if order_type == 6:
            return await c.create_stop_limit_buy_order(
                symbol, volume, price, stop_limit_price, stop_loss, take_profit, options
            )
        if order_type == 7:
            return await c.create_stop_limit_sell_order(
                symbol, volume, price, stop_limit_price, stop_loss, take_profit, options
            )

        # 0/1 have no pending form of their own; they fall back to limit orders
        create = {
            0: c.create_limit_buy_order,
            1: c.create_limit_sell_order,
            2: c.create_limit_buy_order,
            3: c.create_limit_sell_order,
            4: c.create_stop_buy_order,
            5: c.create_stop_sell_order,
        }[order_type]
        return await create(symbol, volume, price, stop_loss, take_profit, options)

    async def modify_position(self, position_id, stop_loss=None, take_profit=None):
        return await self._connection.modify_position(position_id, stop_loss, take_profit)

    async def close_position(self, position_id):
        return await self._connection.close_position(position_id)

    async def disconnect(self) -> None:
        await self._connection.close()


class MetaApiAccount(TerminalAccount):
    def __init__(self, account: Any):
        self._account = account
        self.id = account.id
        self.login = str(account.login)

    async def update(self, password: str, server: str, name: str) -> None:
        await self._account.update({"name": name, "password": password, "server": server})

    async def deploy(self) -> None:
        await self._account.deploy()

    async def wait_deployed(self, timeout_seconds: float) -> None:
        await self._account.wait_deployed(timeout_in_seconds=timeout_seconds)

    async def connect(self) -> TerminalConnection:
        connection = self._account.get_rpc_connection()
        await connection.connect()
        await connection.wait_synchronized(SYNC_TIMEOUT_SECONDS)
        logger.info(f"RPC connection to MetaApi account {self.id} synchronized.")
        return MetaApiConnection(connection)


class MetaApiTerminalProvider(TerminalProvider):
    def __init__(self, token: str):
        self.api = MetaApi(token)

    async def find_account(self, login: str) -> Optional[TerminalAccount]:
        accounts = await self.api.metatrader_account_api.get_accounts_with_infinite_scroll_pagination(
            {"query": login}
        )
        for account in accounts or []:
            if str(account.login) == str(login):
                return MetaApiAccount(account)
        return None

    async def create_account(self, account_data: Dict[str, Any]) -> TerminalAccount:
        account = await self.api.metatrader_account_api.create_account(account_data)
        logger.info(f"Provisioned MetaApi account {account.id} for login {account_data.get('login')}.")
        return MetaApiAccount(account)
