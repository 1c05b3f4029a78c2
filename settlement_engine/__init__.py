"""
Settlement Engine Package.

============================================================
PURPOSE
============================================================
Nets bilateral payment obligations into a minimal set of
transfers and drives those transfers to completion through
a fixed-rate exchange.

CRITICAL PRINCIPLE:
    "Value is conserved across the debt graph."
    "One recipient's failure never blocks its siblings."

AUTHORITY BOUNDARIES:
    CAN:
        - Compute net payments
        - Request quotes and create exchange orders
        - Poll order status and converge settlements
        - Cancel orders awaiting deposit

    MUST NOT:
        - Choose a recipient's receive unit or chain
        - Exceed the exchange's rate limits
        - Execute when the caller is denied by compliance

============================================================
MODULES
============================================================
- types: Obligations, payments, orders, settlements
- config: Engine configuration
- errors: Error taxonomy and codes
- netting: Normalizer, aggregator, matcher, graphs, savings
- state_machine: Settlement lifecycle management
- retry: Bounded exponential backoff
- rate_limit: Per-channel request scheduler
- exchange_client: Throttled, retrying exchange front
- adapters: Exchange adapters (SideShift, Mock)
- orchestrator: Net payments -> exchange orders
- poller: Order status convergence
- price_oracle: CoinGecko USD rates
- address_validation: Settle address format checks
- schemas: Request intake models
- service: Main settlement facade

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    # Constants
    BALANCE_EPSILON,
    USD_QUANTUM,
    # Enums
    SettlementStatus,
    OrderStatus,
    ComplianceStatus,
    # Dataclasses
    Obligation,
    NormalizedObligation,
    PartyBalance,
    NetPayment,
    RecipientPreference,
    Order,
    FailureRecord,
    NettingSummary,
    Settlement,
    # Exceptions
    SettlementEngineError,
    InvalidObligationError,
    SettlementStateError,
    ComplianceDeniedError,
    AllOrdersFailedError,
    ExchangeError,
)

# ============================================================
# CONFIG
# ============================================================
from .config import (
    RetryConfig,
    ChannelLimit,
    RateLimitConfig,
    TimeoutConfig,
    ExchangeConfig,
    PriceOracleConfig,
    SettlementEngineConfig,
    DEFAULT_FALLBACK_RATES,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ErrorCategory,
    RetryEligibility,
    ErrorCodeInfo,
    ERROR_CODES,
    get_error_info,
    is_retryable,
    classify_http_status,
    code_for_http_status,
    RETRYABLE_ERROR_CODES,
    RECIPIENT_ERROR_CODES,
)

# ============================================================
# NETTING
# ============================================================
from .netting import (
    ObligationNormalizer,
    NormalizationResult,
    compute_net_balances,
    greedy_match,
    DebtGraph,
    GraphEdge,
    SavingsReport,
    calculate_savings,
    NettingResult,
    compute_netting,
)

# ============================================================
# STATE MACHINE
# ============================================================
from .state_machine import (
    VALID_TRANSITIONS,
    StateTransitionEvent,
    TransitionGuard,
    SettlementStateMachine,
)

# ============================================================
# RETRY / RATE LIMIT / CLIENT
# ============================================================
from .retry import RetryPolicy, retry, is_retryable_exception
from .rate_limit import Channel, RequestScheduler, NoOpScheduler
from .exchange_client import ExchangeClient

# ============================================================
# ADAPTERS
# ============================================================
from .adapters import (
    ExchangeAdapter,
    PairBounds,
    QuoteRequest,
    Quote,
    CreateOrderRequest,
    OrderReceipt,
    OrderStatusResponse,
    CoinInfo,
    map_external_status,
    SideShiftAdapter,
    MockExchangeAdapter,
    MockConfig,
)

# ============================================================
# ORCHESTRATION
# ============================================================
from .orchestrator import ExchangeOrderOrchestrator, ExecutionResult, make_idempotency_key
from .poller import StatusPoller, PollResult

# ============================================================
# COLLABORATORS
# ============================================================
from .price_oracle import CoinGeckoPriceOracle, PriceLookupError
from .address_validation import (
    AddressCheck,
    AddressValidator,
    FormatAddressValidator,
    validate_settle_details,
)
from .schemas import (
    ObligationIn,
    RecipientPreferenceIn,
    SettlementCreate,
    parse_settlement_request,
    extract_caller_ip,
)

# ============================================================
# SERVICE
# ============================================================
from .service import SettlementService


__version__ = "1.0.0"

__all__ = [
    # Types
    "BALANCE_EPSILON",
    "USD_QUANTUM",
    "SettlementStatus",
    "OrderStatus",
    "ComplianceStatus",
    "Obligation",
    "NormalizedObligation",
    "PartyBalance",
    "NetPayment",
    "RecipientPreference",
    "Order",
    "FailureRecord",
    "NettingSummary",
    "Settlement",
    "SettlementEngineError",
    "InvalidObligationError",
    "SettlementStateError",
    "ComplianceDeniedError",
    "AllOrdersFailedError",
    "ExchangeError",
    # Config
    "RetryConfig",
    "ChannelLimit",
    "RateLimitConfig",
    "TimeoutConfig",
    "ExchangeConfig",
    "PriceOracleConfig",
    "SettlementEngineConfig",
    "DEFAULT_FALLBACK_RATES",
    # Errors
    "ErrorCategory",
    "RetryEligibility",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "get_error_info",
    "is_retryable",
    "classify_http_status",
    "code_for_http_status",
    "RETRYABLE_ERROR_CODES",
    "RECIPIENT_ERROR_CODES",
    # Netting
    "ObligationNormalizer",
    "NormalizationResult",
    "compute_net_balances",
    "greedy_match",
    "DebtGraph",
    "GraphEdge",
    "SavingsReport",
    "calculate_savings",
    "NettingResult",
    "compute_netting",
    # State machine
    "VALID_TRANSITIONS",
    "StateTransitionEvent",
    "TransitionGuard",
    "SettlementStateMachine",
    # Retry / rate limit / client
    "RetryPolicy",
    "retry",
    "is_retryable_exception",
    "Channel",
    "RequestScheduler",
    "NoOpScheduler",
    "ExchangeClient",
    # Adapters
    "ExchangeAdapter",
    "PairBounds",
    "QuoteRequest",
    "Quote",
    "CreateOrderRequest",
    "OrderReceipt",
    "OrderStatusResponse",
    "CoinInfo",
    "map_external_status",
    "SideShiftAdapter",
    "MockExchangeAdapter",
    "MockConfig",
    # Orchestration
    "ExchangeOrderOrchestrator",
    "ExecutionResult",
    "make_idempotency_key",
    "StatusPoller",
    "PollResult",
    # Collaborators
    "CoinGeckoPriceOracle",
    "PriceLookupError",
    "AddressCheck",
    "AddressValidator",
    "FormatAddressValidator",
    "validate_settle_details",
    "ObligationIn",
    "RecipientPreferenceIn",
    "SettlementCreate",
    "parse_settlement_request",
    "extract_caller_ip",
    # Service
    "SettlementService",
]
