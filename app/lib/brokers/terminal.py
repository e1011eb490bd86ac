# backend/app/lib/brokers/terminal.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional


class TerminalConnection(ABC):
    """
    Live handle to one remote MetaTrader account.

    Order-type codes follow the MT5 table (0 buy .. 7 sell_stop_limit).
    Vendor payloads are returned as plain dicts with camelCase keys.
    """

    @abstractmethod
    async def get_account_information(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_symbol_price(self, symbol: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_symbol_specification(self, symbol: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_positions(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_history_orders(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_history_deals(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Executions in the window; these carry profit, commission and swap."""

    @abstractmethod
    async def create_market_order(
        self,
        symbol: str,
        order_type: int,
        volume: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """``order_type`` is 0 (buy) or 1 (sell)."""

    @abstractmethod
    async def create_pending_order(
        self,
        symbol: str,
        order_type: int,
        volume: float,
        price: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        stop_limit_price: Optional[float] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def modify_position(
        self, position_id: str, stop_loss: Optional[float] = None, take_profit: Optional[float] = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def close_position(self, position_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass


class TerminalAccount(ABC):
    """A provisioned vendor-side MetaTrader account."""

    id: str
    login: str

    @abstractmethod
    async def update(self, password: str, server: str, name: str) -> None:
        pass

    @abstractmethod
    async def deploy(self) -> None:
        pass

    @abstractmethod
    async def wait_deployed(self, timeout_seconds: float) -> None:
        pass

    @abstractmethod
    async def connect(self) -> TerminalConnection:
        pass


class TerminalProvider(ABC):
    """Entry point of the vendor cloud: account lookup and provisioning."""

    @abstractmethod
    async def find_account(self, login: str) -> Optional[TerminalAccount]:
        pass

    @abstractmethod
    async def create_account(self, account_data: Dict[str, Any]) -> TerminalAccount:
        pass
