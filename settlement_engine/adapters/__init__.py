"""
Settlement Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations.

AVAILABLE ADAPTERS:
- SideShiftAdapter: SideShift v2 API
- MockExchangeAdapter: For testing

UTILITIES:
- AdapterLogger: Secure logging
- map_external_status: Exchange status -> OrderStatus

============================================================
"""

# Base types
from .base import (
    ExchangeAdapter,
    PairBounds,
    QuoteRequest,
    Quote,
    CreateOrderRequest,
    OrderReceipt,
    OrderStatusResponse,
    CoinInfo,
    EXTERNAL_STATUS_MAPPING,
    map_external_status,
)

# Adapters
from .sideshift import SideShiftAdapter
from .mock import MockExchangeAdapter, MockConfig

# Logging
from .logging_utils import (
    AdapterLogger,
    mask_value,
    mask_headers,
    mask_params,
)


__all__ = [
    # Base
    "ExchangeAdapter",
    "PairBounds",
    "QuoteRequest",
    "Quote",
    "CreateOrderRequest",
    "OrderReceipt",
    "OrderStatusResponse",
    "CoinInfo",
    "EXTERNAL_STATUS_MAPPING",
    "map_external_status",
    # Adapters
    "SideShiftAdapter",
    "MockExchangeAdapter",
    "MockConfig",
    # Logging
    "AdapterLogger",
    "mask_value",
    "mask_headers",
    "mask_params",
]
