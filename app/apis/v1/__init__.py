# backend/app/apis/v1/__init__.py
from fastapi import APIRouter
from app.apis.v1 import capital
from app.apis.v1 import mt5
api_router = APIRouter()

# 1. Capital.com Router
api_router.include_router(capital.router, prefix="/capital", tags=["Capital.com"])

# 2. MetaTrader 5 Router
api_router.include_router(mt5.router, prefix="/mt5", tags=["MetaTrader 5"])
