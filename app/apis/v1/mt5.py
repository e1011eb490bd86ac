# backend/app/apis/v1/mt5.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from app.apis.v1.dependencies import get_mt5_gateway
from app.auth.dependency import identity_for
from app.lib.brokers.mt5 import MT5Gateway
from app.schemas import ModifyPositionRequest, MT5LoginRequest, MT5TradeRequest, Platform

router = APIRouter()

CurrentIdentity = Depends(identity_for(Platform.MT5.value))
Gateway = Depends(get_mt5_gateway)


@router.post("/login")
async def login(payload: Optional[MT5LoginRequest] = None, gateway: MT5Gateway = Gateway):
    """
    Opens (provisioning and deploying on first use) the MetaApi account for
    this MT5 login and returns a local bearer token.
    """
    return await gateway.login(payload or MT5LoginRequest())

@router.post("/logout")
async def logout(identity: Optional[str] = CurrentIdentity, gateway: MT5Gateway = Gateway):
    return await gateway.logout(identity)

@router.get("/account", response_model=Dict[str, Any])
async def get_account(identity: Optional[str] = CurrentIdentity, gateway: MT5Gateway = Gateway):
    return await gateway.get_account(identity)

@router.get("/market/{symbol}", response_model=Dict[str, Any])
async def get_market_data(symbol: str, identity: Optional[str] = CurrentIdentity, gateway: MT5Gateway = Gateway):
    return await gateway.get_market_data(identity, symbol)

@router.get("/positions", response_model=List[Dict[str, Any]])
async def get_positions(identity: Optional[str] = CurrentIdentity, gateway: MT5Gateway = Gateway):
    return await gateway.get_positions(identity)

@router.get("/history", response_model=List[Dict[str, Any]])
async def get_trade_history(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    identity: Optional[str] = CurrentIdentity,
    gateway: MT5Gateway = Gateway,
):
    return await gateway.get_trade_history(identity, date_from, date_to)

@router.post("/trade")
async def place_trade(
    payload: Optional[MT5TradeRequest] = None,
    identity: Optional[str] = CurrentIdentity,
    gateway: MT5Gateway = Gateway,
):
    return await gateway.place_trade(identity, payload or MT5TradeRequest())

@router.put("/position/{ticket}")
async def modify_position(
    ticket: str,
    payload: Optional[ModifyPositionRequest] = None,
    identity: Optional[str] = CurrentIdentity,
    gateway: MT5Gateway = Gateway,
):
    return await gateway.modify_position(identity, ticket, payload or ModifyPositionRequest())

@router.delete("/position/{ticket}")
async def close_position(ticket: str, identity: Optional[str] = CurrentIdentity, gateway: MT5Gateway = Gateway):
    return await gateway.close_position(identity, ticket)
