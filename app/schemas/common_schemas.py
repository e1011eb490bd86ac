from enum import Enum

class Platform(str, Enum):
    CAPITAL = "capital.com"
    MT5 = "mt5"

class TradeDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "TradeDirection":
        return TradeDirection.SELL if self is TradeDirection.BUY else TradeDirection.BUY

class ActionKind(str, Enum):
    PLACE_TRADE = "place_trade"
    CLOSE_POSITION = "close_position"

class ActionState(str, Enum):
    PLACED = "placed"
    READ = "read"
    OFFSET_SENT = "offset_sent"
    CONFIRMED = "confirmed"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionState.CONFIRMED, ActionState.CLOSED, ActionState.FAILED)
