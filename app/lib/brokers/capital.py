# backend/app/lib/brokers/capital.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.exception import AuthenticationError, NotFoundError, UpstreamError, ValidationError
from app.lib.brokers.base import BrokerGateway, history_window, parse_time
from app.lib.brokers.journal import ActionJournal
from app.schemas import (
    ActionKind,
    ActionRecord,
    ActionState,
    CapitalLoginRequest,
    ModifyPositionRequest,
    Platform,
    TradeDirection,
    TradeRequest,
)

logger = logging.getLogger(__name__)

# Order types accepted on /trade -> (direction, working-order type or None for market)
ORDER_TYPES: Dict[str, Tuple[TradeDirection, Optional[str]]] = {
    "buy": (TradeDirection.BUY, None),
    "sell": (TradeDirection.SELL, None),
    "buy_limit": (TradeDirection.BUY, "LIMIT"),
    "sell_limit": (TradeDirection.SELL, "LIMIT"),
    "buy_stop": (TradeDirection.BUY, "STOP"),
    "sell_stop": (TradeDirection.SELL, "STOP"),
}

PRICE_RESOLUTIONS = {
    "MINUTE", "MINUTE_5", "MINUTE_15", "MINUTE_30", "HOUR", "HOUR_4", "DAY", "WEEK",
}


@dataclass
class CapitalSession:
    cst: str
    security_token: Optional[str]
    client_id: Optional[str]
    account_id: Optional[str]
    timezone_offset: Optional[int]
    expires: datetime


def vendor_time(dt: datetime) -> str:
    """Capital.com takes UTC timestamps without offset or fraction."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def build_offsetting_order(deal_id: str, epic: str, direction: TradeDirection, size: float) -> Dict[str, Any]:
    """Market order in the opposite direction and equal size, flattening ``deal_id``."""
    return {
        "dealId": deal_id,
        "epic": epic,
        "direction": direction.opposite.value,
        "size": size,
        "orderType": "MARKET",
    }


class CapitalComGateway(BrokerGateway[CapitalSession]):
    """
    Capital.com REST gateway.

    - Login: POST /session; session tokens come back in the CST and
      X-SECURITY-TOKEN response headers and go out on every later call.
    - Place trade is two calls (POST then GET /confirms/{dealReference});
      close is a read followed by an offsetting market order. Both are
      recorded in the action journal.
    """

    platform = Platform.CAPITAL.value

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        session_ttl_seconds: float,
        journal: Optional[ActionJournal] = None,
    ):
        super().__init__(session_ttl_seconds)
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.journal = journal or ActionJournal()

    # -------------------------
    # HTTP plumbing
    # -------------------------
    def _headers(self, session: Optional[CapitalSession] = None) -> Dict[str, str]:
        headers = {"X-CAP-API-KEY": self.api_key, "Content-Type": "application/json"}
        if session:
            headers["CST"] = session.cst
            if session.security_token:
                headers["X-SECURITY-TOKEN"] = session.security_token
        return headers

    @staticmethod
    def _error_code(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return body.get("errorCode") or body
        return body

    def vendor_error_details(self, exc: Exception) -> Any:
        if isinstance(exc, httpx.HTTPStatusError):
            return self._error_code(exc.response)
        return str(exc)

    async def _call(
        self,
        method: str,
        path: str,
        session: Optional[CapitalSession] = None,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        not_found: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = await self.client.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(session),
            json=json,
            params=params,
        )
        if response.status_code == 404 and not_found:
            raise NotFoundError(not_found, self._error_code(response))
        response.raise_for_status()
        return response.json() if response.content else {}

    # -------------------------
    # Session
    # -------------------------
    async def login(self, payload: CapitalLoginRequest) -> Dict[str, Any]:
        self.require("Username and password are required", payload.username, payload.password)
        username = payload.username

        async with self.sessions.lock(username):
            async with self.upstream_guard("Authentication failed", username=username):
                response = await self.client.post(
                    f"{self.base_url}/session",
                    json={"identifier": username, "password": payload.password, "encryptedPassword": False},
                    headers=self._headers(),
                )
                error_code = None if response.is_success else self._error_code(response)
                if response.status_code in (401, 403) or (
                    isinstance(error_code, str) and error_code.startswith("error.invalid.details")
                ):
                    logger.info(f"Capital.com rejected credentials for '{username}': {error_code}")
                    raise AuthenticationError("Authentication failed", error_code)
                response.raise_for_status()

                cst = response.headers.get("CST")
                if not cst:
                    raise AuthenticationError("Authentication failed")

                body = response.json() if response.content else {}
                session = CapitalSession(
                    cst=cst,
                    security_token=response.headers.get("X-SECURITY-TOKEN"),
                    client_id=body.get("clientId"),
                    account_id=body.get("currentAccountId") or body.get("accountId"),
                    timezone_offset=body.get("timezoneOffset"),
                    expires=datetime.now(timezone.utc) + timedelta(seconds=self.sessions.ttl_seconds),
                )

            await self.sessions.put(username, session)

        logger.info(f"Capital.com session opened for '{username}' (account {session.account_id}).")
        return {"success": True, "token": self.issue_token(username)}

    async def logout(self, identity: Optional[str]) -> Dict[str, Any]:
        identity = self.require_identity(identity)

        async with self.sessions.lock(identity):
            session = await self.sessions.pop(identity)
            if session is not None:
                try:
                    await self._call("DELETE", "/session", session)
                except httpx.HTTPError as e:
                    # Best effort: the local entry is already gone
                    logger.warning(
                        f"Capital.com session teardown failed for '{identity}': {self.vendor_error_details(e)}"
                    )

        return {"success": True, "message": "Logged out successfully"}

    # -------------------------
    # Reads
    # -------------------------
    async def get_account(self, identity: Optional[str]) -> Dict[str, Any]:
        session = await self.require_session(identity)

        async with self.upstream_guard("Failed to get account information", identity=identity):
            data = await self._call("GET", "/accounts", session)
            account = next(
                (a for a in data.get("accounts") or [] if str(a.get("accountId")) == str(session.account_id)),
                None,
            )
            if account is None:
                raise NotFoundError("Account information not found")

            # Current API nests the figures under "balance"
            figures = dict(account)
            if isinstance(account.get("balance"), dict):
                figures.update(account["balance"])

            return {
                "balance": figures.get("balance"),
                "currency": figures.get("currency"),
                "profitLoss": figures.get("profitLoss"),
                "available": figures.get("available"),
                "name": figures.get("accountName"),
                "type": figures.get("accountType"),
                "status": figures.get("status"),
            }

    async def get_market_data(self, identity: Optional[str], symbol: str) -> Dict[str, Any]:
        session = await self.require_session(identity)
        symbol = (symbol or "").strip()
        self.require("Symbol is required", symbol)

        async with self.upstream_guard("Failed to get market data", identity=identity, symbol=symbol):
            data = await self._call("GET", f"/markets/{symbol}", session, not_found="Market data not found")

            if data.get("markets"):
                market = data["markets"][0]
            elif data.get("snapshot"):
                market = {**data["snapshot"], "epic": (data.get("instrument") or {}).get("epic", symbol)}
            else:
                raise NotFoundError("Market data not found")

            bid, ask = market["bid"], market["offer"]
            return {
                "symbol": market.get("epic", symbol),
                "bid": bid,
                "ask": ask,
                "time": parse_time(market.get("updateTimeUTC") or market.get("updateTime")),
                "spread": ask - bid,
                "high": market.get("high"),
                "low": market.get("low"),
                "percentageChange": market.get("percentageChange"),
                "netChange": market.get("netChange"),
            }

    async def get_price_history(
        self,
        identity: Optional[str],
        symbol: str,
        resolution: str = "MINUTE",
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        max_points: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        session = await self.require_session(identity)
        symbol = (symbol or "").strip()
        self.require("Symbol is required", symbol)

        resolution = (resolution or "MINUTE").upper()
        if resolution not in PRICE_RESOLUTIONS:
            raise ValidationError("Unsupported resolution", sorted(PRICE_RESOLUTIONS))

        params: Dict[str, Any] = {"resolution": resolution}
        if max_points:
            params["max"] = max_points
        if date_from or date_to:
            start, end = history_window(date_from, date_to)
            params.update({"from": vendor_time(start), "to": vendor_time(end)})

        async with self.upstream_guard("Failed to get price history", identity=identity, symbol=symbol):
            data = await self._call("GET", f"/prices/{symbol}", session, params=params, not_found="Market data not found")
            return [
                {
                    "time": parse_time(p.get("snapshotTimeUTC") or p.get("snapshotTime")),
                    "open": p["openPrice"]["bid"],
                    "high": p["highPrice"]["bid"],
                    "low": p["lowPrice"]["bid"],
                    "close": p["closePrice"]["bid"],
                    "volume": p.get("lastTradedVolume") or 0,
                }
                for p in data.get("prices") or []
            ]

    async def get_positions(self, identity: Optional[str]) -> List[Dict[str, Any]]:
        session = await self.require_session(identity)

        async with self.upstream_guard("Failed to get positions", identity=identity):
            data = await self._call("GET", "/positions", session)
            formatted = []
            for item in data.get("positions") or []:
                # Entries are either flat or {"position": {...}, "market": {...}}
                position = item.get("position", item)
                market = item.get("market") or position.get("market") or {}
                formatted.append({
                    "dealId": position.get("dealId"),
                    "symbol": market.get("epic"),
                    "type": position["direction"].lower(),
                    "volume": position.get("size"),
                    "openTime": parse_time(position.get("createdDateUTC") or position.get("createdDate")),
                    "openPrice": position.get("level"),
                    "stopLoss": position.get("stopLevel"),
                    "takeProfit": position.get("limitLevel", position.get("profitLevel")),
                    "profit": position.get("profit", position.get("upl")),
                    "currency": position.get("currency"),
                })
            return formatted

    async def get_trade_history(
        self, identity: Optional[str], date_from: Optional[str], date_to: Optional[str]
    ) -> List[Dict[str, Any]]:
        session = await self.require_session(identity)
        start, end = history_window(date_from, date_to)

        async with self.upstream_guard("Failed to get trade history", identity=identity):
            data = await self._call(
                "GET",
                "/history/transactions",
                session,
                params={"from": vendor_time(start), "to": vendor_time(end), "type": "ALL_DEAL"},
            )
            return [
                {
                    "dealId": t.get("dealId"),
                    "symbol": t.get("epic"),
                    "type": (t.get("direction") or "").lower() or None,
                    "volume": t.get("size"),
                    "openTime": parse_time(t.get("dateUtc")),
                    "closeTime": parse_time(t.get("closeDate")),
                    "openPrice": t.get("openLevel"),
                    "closePrice": t.get("closeLevel"),
                    "profit": t.get("profitAndLoss"),
                    "currency": t.get("currency"),
                }
                for t in data.get("transactions") or []
            ]

    async def list_actions(self, identity: Optional[str]) -> List[Dict[str, Any]]:
        identity = self.require_identity(identity)
        return [r.model_dump(mode="json") for r in self.journal.unresolved(identity)]

    # -------------------------
    # Orders
    # -------------------------
    def _failed(self, message: str, record: ActionRecord, error: Any) -> UpstreamError:
        self.journal.advance(record, ActionState.FAILED, error=error)
        return UpstreamError(message, record.model_dump(mode="json"))

    async def place_trade(self, identity: Optional[str], payload: TradeRequest) -> Dict[str, Any]:
        session = await self.require_session(identity)
        self.require(
            "Symbol, type, and volume are required",
            payload.symbol,
            payload.type,
            payload.volume,
            zero_is_missing=True,
        )

        if payload.type not in ORDER_TYPES:
            raise ValidationError("Unsupported order type", sorted(ORDER_TYPES))
        direction, working_type = ORDER_TYPES[payload.type]
        if working_type and payload.price is None:
            raise ValidationError("Price is required for pending orders")

        order = drop_none({
            "epic": payload.symbol,
            "direction": direction.value,
            "size": payload.volume,
            "guaranteedStop": False,
            "stopLevel": payload.stopLoss,
            "profitLevel": payload.takeProfit,
        })
        path = "/positions"
        if working_type:
            order.update({"type": working_type, "level": payload.price})
            path = "/workingorders"

        async with self.upstream_guard("Failed to place trade", identity=identity, symbol=payload.symbol):
            placed = await self._call("POST", path, session, json=order)

        reference = placed.get("dealReference")
        if not reference:
            raise UpstreamError("Trade execution failed", placed or None)

        record = self.journal.start(
            identity, ActionKind.PLACE_TRADE, ActionState.PLACED, dealReference=reference, data=order
        )

        try:
            async with self.upstream_guard("Trade execution failed", identity=identity, reference=reference):
                confirm = await self._call("GET", f"/confirms/{reference}", session)
        except UpstreamError as e:
            raise self._failed("Trade execution failed", record, e.details) from e

        deal_id = confirm.get("dealId")
        if not deal_id or confirm.get("dealStatus") == "REJECTED":
            raise self._failed("Trade execution failed", record, confirm.get("reason") or "Deal not confirmed")

        self.journal.advance(record, ActionState.CONFIRMED, dealId=deal_id)
        logger.info(f"Deal {deal_id} confirmed for '{identity}' ({direction.value} {payload.volume} {payload.symbol}).")
        return {
            "dealId": deal_id,
            "dealReference": reference,
            "openTime": parse_time(confirm.get("date")),
            "openPrice": confirm.get("level"),
            "success": True,
        }

    async def modify_position(
        self, identity: Optional[str], position_id: str, payload: ModifyPositionRequest
    ) -> Dict[str, Any]:
        session = await self.require_session(identity)
        deal_id = (position_id or "").strip()
        self.require("Deal ID is required", deal_id)

        async with self.upstream_guard("Failed to modify position", identity=identity, deal_id=deal_id):
            data = await self._call(
                "PUT",
                f"/positions/{deal_id}",
                session,
                json=drop_none({"stopLevel": payload.stopLoss, "profitLevel": payload.takeProfit}),
                not_found="Position not found",
            )

        reference = data.get("dealReference")
        if not reference:
            raise UpstreamError("Position modification failed", data or None)

        return {"success": True, "message": "Position modified successfully", "dealReference": reference}

    async def close_position(self, identity: Optional[str], position_id: str) -> Dict[str, Any]:
        session = await self.require_session(identity)
        deal_id = (position_id or "").strip()
        self.require("Deal ID is required", deal_id)

        async with self.upstream_guard("Failed to close position", identity=identity, deal_id=deal_id):
            data = await self._call("GET", f"/positions/{deal_id}", session, not_found="Position not found")
            position = data.get("position")
            if not position:
                raise NotFoundError("Position not found")
            market = data.get("market") or position.get("market") or {}
            order = build_offsetting_order(
                deal_id, market["epic"], TradeDirection(position["direction"].upper()), position["size"]
            )

        record = self.journal.start(identity, ActionKind.CLOSE_POSITION, ActionState.READ, dealId=deal_id, data=order)

        try:
            async with self.upstream_guard("Failed to close position", identity=identity, deal_id=deal_id):
                self.journal.advance(record, ActionState.OFFSET_SENT)
                result = await self._call("POST", "/positions/otc", session, json=order)
        except UpstreamError as e:
            raise self._failed("Failed to close position", record, e.details) from e

        reference = result.get("dealReference")
        if not reference:
            raise self._failed("Position closure failed", record, result or "No deal reference")

        self.journal.advance(record, ActionState.CLOSED, dealReference=reference)
        return {"success": True, "message": "Position closed successfully", "dealReference": reference}
