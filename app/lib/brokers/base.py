# backend/app/lib/brokers/base.py
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, TypeVar

import dateutil.parser

from app.auth.jwt_handler import create_access_token
from app.core.exception import AuthenticationError, GatewayError, UpstreamError, ValidationError
from app.core.session_store import EvictHook, SessionStore

logger = logging.getLogger(__name__)

S = TypeVar("S")

DEFAULT_HISTORY_DAYS = 30


class BrokerGateway(ABC, Generic[S]):
    """
    Base contract for the vendor gateways.

    Every gateway:
    - exchanges caller credentials for an upstream session/connection and
      caches it under the caller's identity
    - issues a local bearer token for that identity
    - forwards account, quote, position, history and order calls, renaming
      vendor fields into the gateway's JSON shape

    Authenticated operations take the identity resolved from the bearer token
    (None when the token was missing or invalid).
    """

    platform: str

    def __init__(self, session_ttl_seconds: float, on_evict: Optional[EvictHook] = None):
        self.sessions: SessionStore[S] = SessionStore(session_ttl_seconds, on_evict=on_evict)

    # -------------------------
    # Shared helpers
    # -------------------------
    def issue_token(self, identity: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
        return create_access_token(identity, self.platform, extra_claims)

    async def require_session(self, identity: Optional[str]) -> S:
        session = await self.sessions.get(identity) if identity else None
        if session is None:
            raise AuthenticationError("Not authenticated or session expired")
        return session

    def require_identity(self, identity: Optional[str]) -> str:
        if not identity:
            raise AuthenticationError("Not authenticated or session expired")
        return identity

    @staticmethod
    def require(message: str, *values: Any, zero_is_missing: bool = False) -> None:
        """None and "" count as missing; so does 0 when ``zero_is_missing`` is set."""
        if any(v is None or v == "" or (zero_is_missing and v == 0) for v in values):
            raise ValidationError(message)

    def vendor_error_details(self, exc: Exception) -> Any:
        return str(exc)

    @asynccontextmanager
    async def upstream_guard(self, action: str, **context: Any) -> AsyncIterator[None]:
        """
        Outermost boundary of one operation: gateway errors pass through,
        everything else is logged with context and becomes ``UpstreamError``.
        """
        try:
            yield
        except GatewayError:
            raise
        except Exception as e:
            details = self.vendor_error_details(e)
            logger.error(f"[{self.platform}] {action} failed {context}: {details}")
            raise UpstreamError(action, details) from e

    # -------------------------
    # Contract
    # -------------------------
    @abstractmethod
    async def login(self, payload: Any) -> Dict[str, Any]:
        """Authenticate upstream, cache the session, return ``{success, token}``."""

    @abstractmethod
    async def logout(self, identity: Optional[str]) -> Dict[str, Any]:
        """Tear down the upstream session (best effort) and drop the cache entry."""

    @abstractmethod
    async def get_account(self, identity: Optional[str]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_market_data(self, identity: Optional[str], symbol: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_positions(self, identity: Optional[str]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_trade_history(
        self, identity: Optional[str], date_from: Optional[str], date_to: Optional[str]
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def place_trade(self, identity: Optional[str], payload: Any) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def modify_position(self, identity: Optional[str], position_id: str, payload: Any) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def close_position(self, identity: Optional[str], position_id: str) -> Dict[str, Any]:
        pass


# -------------------------
# Time helpers
# -------------------------
def parse_time(value: Any) -> Optional[datetime]:
    """
    Vendor timestamps arrive as ISO strings, epoch milliseconds or datetimes.
    Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        dt = dateutil.parser.parse(str(value))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def history_window(
    date_from: Optional[str], date_to: Optional[str], now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """Query bounds; omitted ones default to the trailing 30 days ending now."""
    now = now or datetime.now(timezone.utc)
    try:
        start = parse_time(date_from) or now - timedelta(days=DEFAULT_HISTORY_DAYS)
        end = parse_time(date_to) or now
    except (ValueError, OverflowError):
        raise ValidationError("Invalid date range", {"from": date_from, "to": date_to})
    return start, end
