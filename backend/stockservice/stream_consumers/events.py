"""
Wire models for the watchlist and positions streams.

Every message is a JSON envelope `{event_type, source, timestamp, data}`.
Decoding discriminates on `event_type` once; unknown types become an
`IgnoredEvent` instead of an error. Unknown fields are dropped and missing
or null fields fall back to empty values.
"""
from typing import ClassVar, Dict, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator


class MalformedEventError(Exception):
    """The payload is not a decodable event of the expected shape."""


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value, info: ValidationInfo):
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value


class Envelope(_WireModel):
    event_type: str = ""
    source: str = ""
    timestamp: str = ""
    data: dict = Field(default_factory=dict)


class Event(_WireModel):
    EVENT_TYPE: ClassVar[str] = ""

    event_type: str = ""
    source: str = ""
    timestamp: str = ""


class IgnoredEvent(Event):
    """Any event_type this stream does not handle."""


# ---------- Watchlist ----------

class WatchlistStock(_WireModel):
    symbol: str = ""
    name: str = ""
    sector: str = ""
    industry: str = ""
    instrument_url: str = ""
    added_at: str = ""


class WatchlistUpdated(Event):
    EVENT_TYPE: ClassVar[str] = "WATCHLIST_UPDATED"

    added_symbols: list[str] = Field(default_factory=list)
    removed_symbols: list[str] = Field(default_factory=list)
    all_symbols: list[str] = Field(default_factory=list)
    total_count: int = 0
    stocks: list[WatchlistStock] = Field(default_factory=list)


class WatchlistSymbolAdded(Event):
    EVENT_TYPE: ClassVar[str] = "WATCHLIST_SYMBOL_ADDED"

    symbol: str = ""
    name: str = ""
    sector: str = ""
    industry: str = ""


class WatchlistSymbolRemoved(Event):
    EVENT_TYPE: ClassVar[str] = "WATCHLIST_SYMBOL_REMOVED"

    symbol: str = ""


WatchlistEvent = Union[WatchlistUpdated, WatchlistSymbolAdded, WatchlistSymbolRemoved, IgnoredEvent]


# ---------- Positions ----------

class PositionData(_WireModel):
    """One broker position; every numeric field is a decimal string."""
    symbol: str = ""
    quantity: str = ""
    average_buy_price: str = ""
    equity: str = ""
    percent_change: str = ""
    equity_change: str = ""
    updated_at: str = ""


class PositionsSnapshot(Event):
    EVENT_TYPE: ClassVar[str] = "POSITIONS_SNAPSHOT"

    positions: list[PositionData] = Field(default_factory=list)
    buying_power: str = ""
    cash: str = ""
    total_equity: str = ""


PositionsEvent = Union[PositionsSnapshot, IgnoredEvent]


# ---------- Decoding ----------

_WATCHLIST_VARIANTS: Dict[str, Type[Event]] = {
    cls.EVENT_TYPE: cls
    for cls in (WatchlistUpdated, WatchlistSymbolAdded, WatchlistSymbolRemoved)
}

_POSITIONS_VARIANTS: Dict[str, Type[Event]] = {
    PositionsSnapshot.EVENT_TYPE: PositionsSnapshot,
}


def _decode(payload: Union[str, bytes], variants: Dict[str, Type[Event]]) -> Event:
    try:
        envelope = Envelope.model_validate_json(payload)
    except ValidationError as e:
        raise MalformedEventError(f"failed to unmarshal event: {e}") from e

    meta = {
        "event_type": envelope.event_type,
        "source": envelope.source,
        "timestamp": envelope.timestamp,
    }
    variant = variants.get(envelope.event_type)
    if variant is None:
        return IgnoredEvent(**meta)

    try:
        return variant.model_validate({**envelope.data, **meta})
    except ValidationError as e:
        raise MalformedEventError(
            f"failed to unmarshal {envelope.event_type} data: {e}"
        ) from e


def decode_watchlist_event(payload: Union[str, bytes]) -> WatchlistEvent:
    return _decode(payload, _WATCHLIST_VARIANTS)


def decode_positions_event(payload: Union[str, bytes]) -> PositionsEvent:
    return _decode(payload, _POSITIONS_VARIANTS)
