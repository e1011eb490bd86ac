import os

os.environ.setdefault("SECRET_KEY", "test-signing-secret")
os.environ.setdefault("CAPITAL_COM_API_KEY", "test-api-key")

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from app.apis.v1.dependencies import get_capital_gateway, get_mt5_gateway
from app.lib.brokers.capital import CapitalComGateway
from app.lib.brokers.mt5 import MT5Gateway
from app.lib.brokers.terminal import TerminalAccount, TerminalConnection, TerminalProvider
from main import app

CAPITAL_BASE_URL = "https://capital.test/api/v1"


# ---------------------------------------------------------------------
# Capital.com upstream double (httpx.MockTransport)
# ---------------------------------------------------------------------

class FakeCapitalAPI:
    """Just enough of the Capital.com REST API to drive the gateway."""

    def __init__(self):
        self.credentials = {"trader@example.com": "s3cret"}
        self.account_id = "ACC-1"
        self.accounts = [
            {
                "accountId": "ACC-0",
                "accountName": "Other",
                "accountType": "CFD",
                "status": "ENABLED",
                "currency": "EUR",
                "balance": {"balance": 1.0, "profitLoss": 0.0, "available": 1.0},
            },
            {
                "accountId": "ACC-1",
                "accountName": "Main",
                "accountType": "CFD",
                "status": "ENABLED",
                "currency": "USD",
                "balance": {"balance": 10000.0, "profitLoss": 25.5, "available": 9500.0},
            },
        ]
        self.markets = {
            "EURUSD": {
                "epic": "EURUSD",
                "bid": 1.0875,
                "offer": 1.0877,
                "updateTime": "2024-03-01T12:00:00",
                "high": 1.09,
                "low": 1.08,
                "percentageChange": 0.12,
                "netChange": 0.0013,
            }
        }
        self.positions: Dict[str, Dict[str, Any]] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.confirms: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []

        self.fail_logout = False
        self.fail_confirm = False
        self.fail_offset = False
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == f"/api/v1{path}"]

    def add_position(self, deal_id: str, epic: str, direction: str, size: float):
        self.positions[deal_id] = {
            "position": {
                "dealId": deal_id,
                "direction": direction,
                "size": size,
                "createdDateUTC": "2024-03-01T10:00:00",
                "level": 1.0850,
                "stopLevel": None,
                "profitLevel": None,
                "upl": 3.2,
                "currency": "USD",
            },
            "market": {"epic": epic},
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len("/api/v1"):]
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if path == "/session" and method == "POST":
            if self.credentials.get(body.get("identifier")) != body.get("password"):
                return httpx.Response(401, json={"errorCode": "error.invalid.details"})
            return httpx.Response(
                200,
                json={"clientId": "CL-1", "currentAccountId": self.account_id, "timezoneOffset": 1},
                headers={"CST": "cst-token", "X-SECURITY-TOKEN": "security-token"},
            )

        if request.headers.get("CST") != "cst-token":
            return httpx.Response(401, json={"errorCode": "error.invalid.session.token"})

        if path == "/session" and method == "DELETE":
            if self.fail_logout:
                return httpx.Response(500, json={"errorCode": "error.service.unavailable"})
            return httpx.Response(200, json={"status": "SUCCESS"})

        if path == "/accounts":
            return httpx.Response(200, json={"accounts": self.accounts})

        if path.startswith("/markets/"):
            market = self.markets.get(path.split("/")[-1])
            if market is None:
                return httpx.Response(404, json={"errorCode": "error.not-found.epic"})
            return httpx.Response(200, json={"markets": [market]})

        if path.startswith("/prices/"):
            return httpx.Response(200, json={"prices": [
                {
                    "snapshotTimeUTC": "2024-03-01T12:00:00",
                    "openPrice": {"bid": 1.08, "ask": 1.0802},
                    "highPrice": {"bid": 1.09, "ask": 1.0902},
                    "lowPrice": {"bid": 1.07, "ask": 1.0702},
                    "closePrice": {"bid": 1.085, "ask": 1.0852},
                    "lastTradedVolume": 120,
                }
            ]})

        if path == "/positions" and method == "GET":
            return httpx.Response(200, json={"positions": list(self.positions.values())})

        if path == "/positions" and method == "POST":
            reference = self._next("REF")
            deal_id = self._next("DEAL")
            self.add_position(deal_id, body["epic"], body["direction"], body["size"])
            self.confirms[reference] = {
                "dealId": deal_id,
                "dealStatus": "ACCEPTED",
                "date": "2024-03-01T12:00:00",
                "level": 1.0877,
            }
            return httpx.Response(200, json={"dealReference": reference})

        if path == "/workingorders" and method == "POST":
            reference = self._next("REF")
            self.confirms[reference] = {
                "dealId": self._next("ORDER"),
                "dealStatus": "ACCEPTED",
                "date": "2024-03-01T12:00:00",
                "level": body.get("level"),
            }
            return httpx.Response(200, json={"dealReference": reference})

        if path.startswith("/confirms/"):
            if self.fail_confirm:
                return httpx.Response(500, json={"errorCode": "error.confirms.unavailable"})
            return httpx.Response(200, json=self.confirms[path.split("/")[-1]])

        if path == "/positions/otc" and method == "POST":
            if self.fail_offset:
                return httpx.Response(400, json={"errorCode": "error.invalid.size"})
            self.positions.pop(body["dealId"], None)
            return httpx.Response(200, json={"dealReference": self._next("REF")})

        if path.startswith("/positions/"):
            deal_id = path.split("/")[-1]
            if deal_id not in self.positions:
                return httpx.Response(404, json={"errorCode": "error.not-found.dealId"})
            if method == "GET":
                return httpx.Response(200, json=self.positions[deal_id])
            if method == "PUT":
                self.positions[deal_id]["position"].update(
                    {"stopLevel": body.get("stopLevel"), "profitLevel": body.get("profitLevel")}
                )
                return httpx.Response(200, json={"dealReference": self._next("REF")})

        if path == "/history/transactions":
            return httpx.Response(200, json={"transactions": self.transactions})

        return httpx.Response(404, json={"errorCode": "error.not-found"})


# ---------------------------------------------------------------------
# MT5 terminal double
# ---------------------------------------------------------------------

class FakeConnection(TerminalConnection):
    def __init__(self):
        self.account_information = {
            "balance": 15000.0,
            "equity": 15300.0,
            "margin": 120.0,
            "freeMargin": 15180.0,
            "leverage": 200,
            "name": "MT5 Account",
            "server": "Demo-Server",
            "currency": "EUR",
            "broker": "Demo Broker Ltd",
        }
        self.prices = {"EURUSD": {"bid": 1.08750, "ask": 1.08762, "time": datetime(2024, 3, 1, 12, tzinfo=timezone.utc)}}
        self.specifications = {"EURUSD": {"digits": 5}}
        self.positions: List[Dict[str, Any]] = []
        self.history: List[Dict[str, Any]] = []
        self.deals: List[Dict[str, Any]] = []
        self.history_queries: List[tuple] = []
        self.market_orders: List[tuple] = []
        self.pending_orders: List[tuple] = []
        self.modified: List[tuple] = []
        self.closed: List[str] = []
        self.calls = 0
        self.fail_disconnect = False
        self.disconnected = False
        self._ticket = 1000

    async def get_account_information(self):
        self.calls += 1
        return self.account_information

    async def get_symbol_price(self, symbol):
        self.calls += 1
        return self.prices[symbol]

    async def get_symbol_specification(self, symbol):
        self.calls += 1
        return self.specifications[symbol]

    async def get_positions(self):
        self.calls += 1
        return self.positions

    async def get_history_orders(self, start, end):
        self.calls += 1
        self.history_queries.append((start, end))
        return self.history

    async def get_history_deals(self, start, end):
        self.calls += 1
        return self.deals

    async def create_market_order(self, symbol, order_type, volume, stop_loss=None, take_profit=None, options=None):
        self.calls += 1
        self._ticket += 1
        self.market_orders.append((symbol, order_type, volume, stop_loss, take_profit, options))
        self.positions.append({
            "id": str(self._ticket),
            "symbol": symbol,
            "type": order_type,
            "volume": volume,
            "time": "2024-03-01T12:00:00Z",
            "openPrice": 1.0876,
            "stopLoss": stop_loss,
            "takeProfit": take_profit,
            "profit": 0.0,
        })
        return {"numericCode": 10009, "stringCode": "TRADE_RETCODE_DONE", "orderId": str(self._ticket), "openPrice": 1.0876}

    async def create_pending_order(
        self, symbol, order_type, volume, price, stop_loss=None, take_profit=None, stop_limit_price=None, options=None
    ):
        self.calls += 1
        self._ticket += 1
        self.pending_orders.append((symbol, order_type, volume, price, stop_loss, take_profit, stop_limit_price, options))
        return {"numericCode": 10009, "stringCode": "TRADE_RETCODE_DONE", "orderId": str(self._ticket)}

    async def modify_position(self, position_id, stop_loss=None, take_profit=None):
        self.calls += 1
        self.modified.append((position_id, stop_loss, take_profit))
        return {"numericCode": 10009}

    async def close_position(self, position_id):
        self.calls += 1
        self.closed.append(position_id)
        self.positions = [p for p in self.positions if p["id"] != position_id]
        return {"numericCode": 10009}

    async def disconnect(self):
        if self.fail_disconnect:
            raise RuntimeError("socket already closed")
        self.disconnected = True


class FakeAccount(TerminalAccount):
    def __init__(self, login: str, data: Optional[Dict[str, Any]] = None, deploy_delay: float = 0.0):
        self.id = f"acc-{login}"
        self.login = login
        self.data = dict(data or {})
        self.deploy_delay = deploy_delay
        self.deployed = False
        self.updates: List[Dict[str, Any]] = []
        self.connections: List[FakeConnection] = []

    async def update(self, password, server, name):
        self.updates.append({"password": password, "server": server, "name": name})

    async def deploy(self):
        self.deployed = True

    async def wait_deployed(self, timeout_seconds):
        await asyncio.sleep(self.deploy_delay)

    async def connect(self):
        connection = FakeConnection()
        self.connections.append(connection)
        return connection


class FakeProvider(TerminalProvider):
    def __init__(self):
        self.accounts: Dict[str, FakeAccount] = {}
        self.created: List[Dict[str, Any]] = []
        self.deploy_delay = 0.0

    async def find_account(self, login):
        return self.accounts.get(login)

    async def create_account(self, account_data):
        self.created.append(account_data)
        account = FakeAccount(account_data["login"], account_data, deploy_delay=self.deploy_delay)
        self.accounts[account.login] = account
        return account


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def capital_api():
    return FakeCapitalAPI()

@pytest.fixture
def capital_gateway(capital_api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(capital_api.handler))
    return CapitalComGateway(
        client=client,
        api_key="test-api-key",
        base_url=CAPITAL_BASE_URL,
        session_ttl_seconds=3600,
    )

@pytest.fixture
def terminal_provider():
    return FakeProvider()

@pytest.fixture
def mt5_gateway(terminal_provider):
    return MT5Gateway(provider=terminal_provider, session_ttl_seconds=3600, deploy_timeout_seconds=1)

@pytest.fixture
def client(capital_gateway, mt5_gateway):
    app.dependency_overrides[get_capital_gateway] = lambda: capital_gateway
    app.dependency_overrides[get_mt5_gateway] = lambda: mt5_gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def capital_token(client):
    response = client.post("/api/v1/capital/login", json={"username": "trader@example.com", "password": "s3cret"})
    assert response.status_code == 200
    return response.json()["token"]

@pytest.fixture
def mt5_token(client):
    response = client.post(
        "/api/v1/mt5/login", json={"login": 5012345, "server": "Demo-Server", "password": "pw"}
    )
    assert response.status_code == 200
    return response.json()["token"]
