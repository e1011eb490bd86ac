# backend/app/lib/brokers/mt5.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.core.exception import UpstreamError, ValidationError
from app.lib.brokers.base import BrokerGateway, history_window, parse_time
from app.lib.brokers.terminal import TerminalAccount, TerminalConnection, TerminalProvider
from app.schemas import ModifyPositionRequest, MT5LoginRequest, MT5TradeRequest, Platform

logger = logging.getLogger(__name__)

ORDER_TYPE_NAMES: Dict[int, str] = {
    0: "buy",
    1: "sell",
    2: "buy_limit",
    3: "sell_limit",
    4: "buy_stop",
    5: "sell_stop",
    6: "buy_stop_limit",
    7: "sell_stop_limit",
}
ORDER_TYPE_CODES: Dict[str, int] = {name: code for code, name in ORDER_TYPE_NAMES.items()}

UNKNOWN_ORDER_TYPE = "unknown"


def order_type_name(order_type: Any) -> str:
    """
    Order-type code -> name. Also accepts the SDK's enum strings
    (``ORDER_TYPE_BUY_LIMIT``, ``POSITION_TYPE_SELL``). Anything else is "unknown".
    """
    if isinstance(order_type, bool):
        return UNKNOWN_ORDER_TYPE
    if isinstance(order_type, int):
        return ORDER_TYPE_NAMES.get(order_type, UNKNOWN_ORDER_TYPE)
    if isinstance(order_type, str):
        name = order_type.strip().lower()
        for prefix in ("order_type_", "position_type_"):
            if name.startswith(prefix):
                name = name[len(prefix):]
        if name.isdigit():
            return ORDER_TYPE_NAMES.get(int(name), UNKNOWN_ORDER_TYPE)
        if name in ORDER_TYPE_CODES:
            return name
    return UNKNOWN_ORDER_TYPE


def order_type_code(name: Optional[str]) -> int:
    """Name -> order-type code; unknown names map to 0 (buy)."""
    return ORDER_TYPE_CODES.get((name or "").strip().lower(), 0)


def scaled_spread(bid: float, ask: float, digits: int) -> float:
    """Spread in points: (ask - bid) * 10^digits."""
    return (ask - bid) * 10 ** digits


def deal_totals(deals: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Sums profit, commission and swap of history deals per order id. Orders
    themselves carry none of these. The price of a closing deal is kept as
    ``closePrice``.
    """
    totals: Dict[str, Dict[str, Any]] = {}
    for deal in deals or []:
        order_id = deal.get("orderId")
        if order_id is None:
            continue
        row = totals.setdefault(str(order_id), {"profit": 0.0, "commission": 0.0, "swap": 0.0})
        for key in ("profit", "commission", "swap"):
            row[key] += deal.get(key) or 0.0
        if deal.get("entryType") in ("DEAL_ENTRY_OUT", "DEAL_ENTRY_INOUT", "DEAL_ENTRY_OUT_BY"):
            row["closePrice"] = deal.get("price")
    return totals


@dataclass
class MT5Connection:
    account: TerminalAccount
    connection: TerminalConnection


class MT5Gateway(BrokerGateway[MT5Connection]):
    """
    MetaTrader 5 gateway over a vendor cloud SDK.

    Login finds (or provisions, deploys and waits for) the vendor account, then
    opens a live connection cached under the MT5 login id. Every other call is a
    single SDK call on that connection.
    """

    platform = Platform.MT5.value

    def __init__(
        self,
        provider: TerminalProvider,
        session_ttl_seconds: float,
        deploy_timeout_seconds: float = 60,
        magic: int = 123456,
        account_type: str = "cloud",
    ):
        super().__init__(session_ttl_seconds, on_evict=self._disconnect_quietly)
        self.provider = provider
        self.deploy_timeout_seconds = deploy_timeout_seconds
        self.magic = magic
        self.account_type = account_type

    async def _disconnect_quietly(self, login: str, record: MT5Connection) -> None:
        try:
            await record.connection.disconnect()
        except Exception as e:
            logger.warning(f"Disconnect failed for MT5 login {login}: {e}")

    async def _connection(self, identity: Optional[str]) -> TerminalConnection:
        return (await self.require_session(identity)).connection

    # -------------------------
    # Session
    # -------------------------
    async def _open_account(self, login: str, server: str, password: str) -> TerminalAccount:
        name = f"{login}@{server}"
        account = await self.provider.find_account(login)

        if account is not None:
            await account.update(password=password, server=server, name=name)
            return account

        account = await self.provider.create_account({
            "name": name,
            "type": self.account_type,
            "login": login,
            "password": password,
            "server": server,
            "platform": "mt5",
            "magic": self.magic,
        })
        await account.deploy()
        try:
            await asyncio.wait_for(
                account.wait_deployed(self.deploy_timeout_seconds), self.deploy_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise UpstreamError(
                "Authentication failed",
                f"Account deployment did not complete within {self.deploy_timeout_seconds} seconds",
            )
        return account

    async def login(self, payload: MT5LoginRequest) -> Dict[str, Any]:
        self.require("Server, login, and password are required", payload.server, payload.login, payload.password)
        login = payload.login

        async with self.sessions.lock(login):
            async with self.upstream_guard("Authentication failed", login=login, server=payload.server):
                account = await self._open_account(login, payload.server, payload.password)
                connection = await account.connect()

            previous = await self.sessions.put(login, MT5Connection(account=account, connection=connection))
            if previous is not None:
                await self._disconnect_quietly(login, previous)

        logger.info(f"MT5 connection opened for login {login} on {payload.server}.")
        return {"success": True, "token": self.issue_token(login, {"server": payload.server})}

    async def logout(self, identity: Optional[str]) -> Dict[str, Any]:
        identity = self.require_identity(identity)

        async with self.sessions.lock(identity):
            record = await self.sessions.pop(identity)
            if record is not None:
                await self._disconnect_quietly(identity, record)

        return {"success": True, "message": "Logged out successfully"}

    # -------------------------
    # Reads
    # -------------------------
    async def get_account(self, identity: Optional[str]) -> Dict[str, Any]:
        connection = await self._connection(identity)

        async with self.upstream_guard("Failed to get account information", login=identity):
            info = await connection.get_account_information()
            return {
                "balance": info.get("balance"),
                "equity": info.get("equity"),
                "margin": info.get("margin"),
                "freeMargin": info.get("freeMargin"),
                "leverage": info.get("leverage"),
                "name": info.get("name"),
                "server": info.get("server"),
                "currency": info.get("currency"),
                "company": info.get("company", info.get("broker")),
            }

    async def get_market_data(self, identity: Optional[str], symbol: str) -> Dict[str, Any]:
        connection = await self._connection(identity)
        symbol = (symbol or "").strip()
        self.require("Symbol is required", symbol)

        async with self.upstream_guard("Failed to get market data", login=identity, symbol=symbol):
            price = await connection.get_symbol_price(symbol)
            specification = await connection.get_symbol_specification(symbol)
            return {
                "symbol": symbol,
                "bid": price["bid"],
                "ask": price["ask"],
                "time": parse_time(price.get("time")),
                "spread": scaled_spread(price["bid"], price["ask"], int(specification["digits"])),
                "high": price.get("high"),
                "low": price.get("low"),
                "volume": price.get("volume"),
            }

    async def get_positions(self, identity: Optional[str]) -> List[Dict[str, Any]]:
        connection = await self._connection(identity)

        async with self.upstream_guard("Failed to get positions", login=identity):
            positions = await connection.get_positions()
            return [
                {
                    "ticket": p.get("id"),
                    "symbol": p.get("symbol"),
                    "type": order_type_name(p.get("type")),
                    "volume": p.get("volume"),
                    "openTime": parse_time(p.get("time")),
                    "openPrice": p.get("openPrice"),
                    "stopLoss": p.get("stopLoss"),
                    "takeProfit": p.get("takeProfit"),
                    "profit": p.get("profit"),
                    "commission": p.get("commission"),
                    "swap": p.get("swap"),
                    "comment": p.get("comment"),
                    "magic": p.get("magic"),
                }
                for p in positions or []
            ]

    async def get_trade_history(
        self, identity: Optional[str], date_from: Optional[str], date_to: Optional[str]
    ) -> List[Dict[str, Any]]:
        connection = await self._connection(identity)
        start, end = history_window(date_from, date_to)

        async with self.upstream_guard("Failed to get trade history", login=identity):
            orders = await connection.get_history_orders(start, end)
            totals = deal_totals(await connection.get_history_deals(start, end))

            history = []
            for o in orders or []:
                fills = totals.get(str(o.get("id")), {})
                history.append({
                    "ticket": o.get("id"),
                    "symbol": o.get("symbol"),
                    "type": order_type_name(o.get("type")),
                    "volume": o.get("volume"),
                    "openTime": parse_time(o.get("openTime") or o.get("time")),
                    "closeTime": parse_time(o.get("closeTime") or o.get("doneTime")),
                    "openPrice": o.get("openPrice"),
                    "closePrice": o.get("closePrice", fills.get("closePrice")),
                    "stopLoss": o.get("stopLoss"),
                    "takeProfit": o.get("takeProfit"),
                    "profit": fills.get("profit"),
                    "commission": fills.get("commission"),
                    "swap": fills.get("swap"),
                    "comment": o.get("comment"),
                    "magic": o.get("magic"),
                })
            return history

    # -------------------------
    # Orders
    # -------------------------
    async def place_trade(self, identity: Optional[str], payload: MT5TradeRequest) -> Dict[str, Any]:
        connection = await self._connection(identity)
        self.require(
            "Symbol, type, and volume are required",
            payload.symbol,
            payload.type,
            payload.volume,
            zero_is_missing=True,
        )

        options = {k: v for k, v in {"comment": payload.comment, "magic": payload.magic}.items() if v is not None}
        market = payload.type in ("buy", "sell")
        code = order_type_code(payload.type)

        if not market:
            if payload.price is None:
                raise ValidationError("Price is required for pending orders")
            if code in (6, 7) and payload.stopLimitPrice is None:
                raise ValidationError("Stop limit price is required for stop-limit orders")
            if payload.expiration:
                options["expiration"] = {"type": "ORDER_TIME_SPECIFIED", "time": payload.expiration}

        async with self.upstream_guard("Failed to place trade", login=identity, symbol=payload.symbol):
            if market:
                result = await connection.create_market_order(
                    payload.symbol, code, payload.volume, payload.stopLoss, payload.takeProfit, options or None
                )
            else:
                result = await connection.create_pending_order(
                    payload.symbol,
                    code,
                    payload.volume,
                    payload.price,
                    payload.stopLoss,
                    payload.takeProfit,
                    payload.stopLimitPrice,
                    options or None,
                )

        return {
            "ticket": result.get("orderId") or result.get("positionId"),
            "openTime": datetime.now(timezone.utc),
            "openPrice": result.get("openPrice"),
            "success": True,
        }

    async def modify_position(
        self, identity: Optional[str], position_id: str, payload: ModifyPositionRequest
    ) -> Dict[str, Any]:
        connection = await self._connection(identity)
        ticket = (position_id or "").strip()
        self.require("Position ticket is required", ticket)

        async with self.upstream_guard("Failed to modify position", login=identity, ticket=ticket):
            await connection.modify_position(ticket, payload.stopLoss, payload.takeProfit)

        return {"success": True, "message": "Position modified successfully"}

    async def close_position(self, identity: Optional[str], position_id: str) -> Dict[str, Any]:
        connection = await self._connection(identity)
        ticket = (position_id or "").strip()
        self.require("Position ticket is required", ticket)

        async with self.upstream_guard("Failed to close position", login=identity, ticket=ticket):
            await connection.close_position(ticket)

        return {"success": True, "message": "Position closed successfully"}
