"""Vault membership discovery and reconciliation package."""

from .errors import (
    NestFiError,
    InvalidAddressInput,
    SourceUnavailable,
    AllSourcesUnavailable,
    MalformedRecord,
    RpcError,
    ContractReadError,
    ConfigLoadError,
)
from .models import (
    SourceId,
    Role,
    ReconciliationStatus,
    PartialMembership,
    VaultRecord,
    MembershipFact,
    PortfolioSummary,
    TokenBalance,
    StrategyInfo,
    VaultTokenSnapshot,
    SourceOutcome,
    MembershipSnapshot,
)
from .http_client import HttpClient, RetryPolicy
from .rpc import VaultRpcClient
from .membership_api import MembershipApiClient
from .log_range import BoundedRecentWindow, CheckpointedIncremental
from .sources import (
    FactoryAdminAdapter,
    EventLogAdapter,
    IndexedApiAdapter,
    VaultSnapshotReader,
    build_default_adapters,
)
from .merger import merge_memberships, merge_vault
from .portfolio import summarize_portfolio
from .reconciliation import ReconciliationController
from .token_strategy import TokenStrategyResolver
from .page_views import PageViewTracker
from .config import Settings, load_settings

__all__ = [
    "NestFiError",
    "InvalidAddressInput",
    "SourceUnavailable",
    "AllSourcesUnavailable",
    "MalformedRecord",
    "RpcError",
    "ContractReadError",
    "ConfigLoadError",
    "SourceId",
    "Role",
    "ReconciliationStatus",
    "PartialMembership",
    "VaultRecord",
    "MembershipFact",
    "PortfolioSummary",
    "TokenBalance",
    "StrategyInfo",
    "VaultTokenSnapshot",
    "SourceOutcome",
    "MembershipSnapshot",
    "HttpClient",
    "RetryPolicy",
    "VaultRpcClient",
    "MembershipApiClient",
    "BoundedRecentWindow",
    "CheckpointedIncremental",
    "FactoryAdminAdapter",
    "EventLogAdapter",
    "IndexedApiAdapter",
    "VaultSnapshotReader",
    "build_default_adapters",
    "merge_memberships",
    "merge_vault",
    "summarize_portfolio",
    "ReconciliationController",
    "TokenStrategyResolver",
    "PageViewTracker",
    "Settings",
    "load_settings",
]
