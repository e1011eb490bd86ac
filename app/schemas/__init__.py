# Re-export from common
from .common_schemas import (
    Platform,
    TradeDirection,
    ActionKind,
    ActionState
)

# Re-export from broker_schemas
from .broker_schemas import (
    CapitalLoginRequest,
    MT5LoginRequest,
    TradeRequest,
    MT5TradeRequest,
    ModifyPositionRequest,
    ActionRecord
)
