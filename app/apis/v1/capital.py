# backend/app/apis/v1/capital.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from app.apis.v1.dependencies import get_capital_gateway
from app.auth.dependency import identity_for
from app.lib.brokers.capital import CapitalComGateway
from app.schemas import CapitalLoginRequest, ModifyPositionRequest, Platform, TradeRequest

router = APIRouter()

CurrentIdentity = Depends(identity_for(Platform.CAPITAL.value))
Gateway = Depends(get_capital_gateway)


# -----------------------
# Session
# -----------------------
@router.post("/login")
async def login(payload: Optional[CapitalLoginRequest] = None, gateway: CapitalComGateway = Gateway):
    """Exchanges Capital.com credentials for a local bearer token."""
    return await gateway.login(payload or CapitalLoginRequest())

@router.post("/logout")
async def logout(identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    return await gateway.logout(identity)


# -----------------------
# Account & market data
# -----------------------
@router.get("/account", response_model=Dict[str, Any])
async def get_account(identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    return await gateway.get_account(identity)

@router.get("/market/{symbol}", response_model=Dict[str, Any])
async def get_market_data(symbol: str, identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    return await gateway.get_market_data(identity, symbol)

@router.get("/market/{symbol}/prices", response_model=List[Dict[str, Any]])
async def get_price_history(
    symbol: str,
    resolution: str = Query("MINUTE"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    max_points: Optional[int] = Query(None, alias="max", ge=1, le=1000),
    identity: Optional[str] = CurrentIdentity,
    gateway: CapitalComGateway = Gateway,
):
    """OHLC bars (bid side) for the chart widgets."""
    return await gateway.get_price_history(identity, symbol, resolution, date_from, date_to, max_points)


# -----------------------
# Trading
# -----------------------
@router.get("/positions", response_model=List[Dict[str, Any]])
async def get_positions(identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    return await gateway.get_positions(identity)

@router.get("/history", response_model=List[Dict[str, Any]])
async def get_trade_history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    identity: Optional[str] = CurrentIdentity,
    gateway: CapitalComGateway = Gateway,
):
    """Closed and open deals; bounds default to the trailing 30 days."""
    return await gateway.get_trade_history(identity, date_from, date_to)

@router.post("/trade")
async def place_trade(
    payload: Optional[TradeRequest] = None,
    identity: Optional[str] = CurrentIdentity,
    gateway: CapitalComGateway = Gateway,
):
    return await gateway.place_trade(identity, payload or TradeRequest())

@router.put("/position/{deal_id}")
async def modify_position(
    deal_id: str,
    payload: Optional[ModifyPositionRequest] = None,
    identity: Optional[str] = CurrentIdentity,
    gateway: CapitalComGateway = Gateway,
):
    return await gateway.modify_position(identity, deal_id, payload or ModifyPositionRequest())

@router.delete("/position/{deal_id}")
async def close_position(deal_id: str, identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    return await gateway.close_position(identity, deal_id)

@router.get("/actions", response_model=List[Dict[str, Any]])
async def list_unresolved_actions(identity: Optional[str] = CurrentIdentity, gateway: CapitalComGateway = Gateway):
    """
    Place/close actions that stopped between vendor calls (or failed) and may
    need manual reconciliation.
    """
    return await gateway.list_actions(identity)
