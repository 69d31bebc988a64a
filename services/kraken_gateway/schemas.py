"""Request bodies accepted by the gateway's trading endpoints.

Every field is optional at the schema level.  Presence of the required fields
is checked by the route handlers so that callers receive the gateway's own
400 payloads (with field descriptions) instead of a bare validation error.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt

MAX_CANCEL_AFTER_TIMEOUT = 86400

ADD_ORDER_REQUIRED_FIELDS: Dict[str, str] = {
    "pair": "Asset pair (e.g., XXBTZUSD)",
    "type": "Order type (buy or sell)",
    "ordertype": "Order type (market, limit, stop-loss, etc.)",
    "volume": "Order volume in base asset",
}

ADD_ORDER_OPTIONAL_FIELDS: Dict[str, str] = {
    "price": "Price for limit orders",
    "price2": "Secondary price for stop orders",
    "leverage": "Leverage ratio",
    "oflags": "Order flags (viqc, fcib, fciq, nompp, post)",
    "starttm": "Scheduled start time",
    "expiretm": "Expiration time",
    "userref": "User reference id",
    "validate": "Validate inputs only (true/false)",
}


class AddOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pair: Optional[str] = None
    type: Optional[str] = None
    ordertype: Optional[str] = None
    volume: Optional[Union[str, float]] = None
    price: Optional[Union[str, float]] = None
    price2: Optional[Union[str, float]] = None
    leverage: Optional[Union[str, int]] = None
    oflags: Optional[str] = None
    starttm: Optional[Union[str, int]] = None
    expiretm: Optional[Union[str, int]] = None
    userref: Optional[int] = None
    validate_only: Optional[bool] = Field(default=None, alias="validate")

    def missing_fields(self) -> list[str]:
        return [name for name in ADD_ORDER_REQUIRED_FIELDS if not getattr(self, name)]

    def to_params(self) -> Dict[str, Any]:
        """Return the Kraken ``AddOrder`` parameters, omitting unset optionals."""

        return self.model_dump(by_alias=True, exclude_none=True)


class CancelOrderRequest(BaseModel):
    txid: Optional[Union[str, int]] = None


class CancelAllOrdersAfterRequest(BaseModel):
    timeout: Optional[StrictInt] = Field(
        default=None,
        description="Seconds until all orders are cancelled; 0 disables the timer.",
    )


__all__ = [
    "ADD_ORDER_OPTIONAL_FIELDS",
    "ADD_ORDER_REQUIRED_FIELDS",
    "AddOrderRequest",
    "CancelAllOrdersAfterRequest",
    "CancelOrderRequest",
    "MAX_CANCEL_AFTER_TIMEOUT",
]
