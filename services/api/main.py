"""NestFi indexing API: vault memberships reconciled from on-chain sources."""

import asyncio
import logging
import os
import sys
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

# Add project root to path for local imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.config import load_settings
from packages.nestfi.errors import AllSourcesUnavailable, ContractReadError, InvalidAddressInput, RpcError
from packages.nestfi.merger import merge_vault
from packages.nestfi.models import ReconciliationStatus, Role, SourceId
from packages.nestfi.normalization import validate_address
from packages.nestfi.reconciliation import ReconciliationController
from packages.nestfi.roster import VaultMemberRoster
from packages.nestfi.rpc import VaultRpcClient
from packages.nestfi.sources import VaultSnapshotReader, build_default_adapters
from packages.nestfi.token_strategy import TokenStrategyResolver

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Configuration from nestfi.yaml / NESTFI_* environment
SETTINGS = load_settings(os.getenv("NESTFI_CONFIG") or None)

app = FastAPI(
    title="NestFi API",
    description="Vault membership discovery for group-investing vaults",
    version="0.3.0",
)

# The service is the indexed source, so it only reconciles on-chain adapters.
rpc_client = VaultRpcClient(rpc_url=SETTINGS.rpc_url, timeout=SETTINGS.rpc_timeout_seconds)
onchain_adapters, _adapter_warnings = build_default_adapters(
    SETTINGS, rpc=rpc_client, include_indexed=False
)
factory_adapters, _ = build_default_adapters(
    SETTINGS, rpc=rpc_client, include_indexed=False, include_event_log=False
)
for _warning in _adapter_warnings:
    logger.warning(_warning)

snapshot_reader = VaultSnapshotReader(rpc_client)
token_resolver = TokenStrategyResolver(rpc_client, SETTINGS.known_base_tokens)
member_roster = VaultMemberRoster.from_settings(SETTINGS, rpc=rpc_client)

pageview_count = 0


class MembershipEntry(BaseModel):
    """One membership in the indexed wire shape (base-unit integer strings)."""

    vaultAddress: str
    vaultName: str
    vaultSymbol: str
    role: str
    userBalance: str
    totalAssets: str
    totalSupply: str
    isPaused: bool
    allowlistEnabled: bool
    isOnAllowlist: bool
    ownerAddress: Optional[str] = None
    assetAddress: Optional[str] = None
    depositCap: str = "0"
    minDeposit: str = "0"
    sources: list[str] = Field(default_factory=list)


class PortfolioSummaryModel(BaseModel):
    totalVaults: int
    adminVaults: int
    memberVaults: int
    totalValueLocked: str
    totalAssetsRaw: str
    totalUserBalanceRaw: str
    userValueLocked: str


class MembershipsResponse(BaseModel):
    """Response body for /memberships and /simple-memberships."""

    userAddress: str
    memberships: list[MembershipEntry]
    summary: PortfolioSummaryModel
    status: str
    partial: bool
    succeededSources: list[str]
    failedSources: list[str]
    error: Optional[str] = None
    completedAt: Optional[str] = None


class CheckMembershipResponse(BaseModel):
    vaultAddress: str
    userAddress: str
    isMember: bool
    isOwner: bool
    role: str
    userBalance: str
    isOnAllowlist: bool
    vaultName: str
    vaultSymbol: str
    totalAssets: str
    totalSupply: str
    isPaused: bool
    allowlistEnabled: bool
    ownerAddress: Optional[str] = None
    assetAddress: Optional[str] = None


class TokenBalanceModel(BaseModel):
    tokenAddress: str
    symbol: str
    decimals: int
    balanceRaw: str
    balance: str
    source: str
    strategyName: Optional[str] = None


class StrategyInfoModel(BaseModel):
    name: str
    address: str
    assetsRaw: str


class VaultTokensResponse(BaseModel):
    vaultAddress: str
    tokens: list[TokenBalanceModel]
    strategies: list[StrategyInfoModel]


class VaultMemberModel(BaseModel):
    address: str
    isActive: bool
    source: str
    balance: Optional[str] = None


class ScanRangeModel(BaseModel):
    fromBlock: str
    toBlock: str


class MembersResponse(BaseModel):
    vaultAddress: str
    members: list[VaultMemberModel]
    totalMembers: int
    activeMembers: int
    scanRange: Optional[ScanRangeModel] = None
    partial: bool = False
    failedParts: list[str] = Field(default_factory=list)


class PageViewRequest(BaseModel):
    page: str = Field("landing", description="Page identifier; only the landing page is counted")


async def _reconcile(user: str, adapters) -> MembershipsResponse:
    try:
        controller = ReconciliationController(
            user,
            adapters,
            adapter_timeout=SETTINGS.adapter_timeout_seconds,
            divisor=SETTINGS.base_unit_divisor,
        )
    except InvalidAddressInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    snapshot = await controller.refresh()
    if snapshot.status == ReconciliationStatus.FAILED:
        raise HTTPException(status_code=503, detail=str(snapshot.error))
    return MembershipsResponse(**snapshot.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "nestfi-api", "chainId": SETTINGS.chain_id}


@app.get("/memberships", response_model=MembershipsResponse)
async def get_memberships(user: str = Query(..., description="Wallet address (0x...)")):
    """Memberships from factory enumeration and allowlist events."""
    return await _reconcile(user, onchain_adapters)


@app.get("/simple-memberships", response_model=MembershipsResponse)
async def get_simple_memberships(user: str = Query(..., description="Wallet address (0x...)")):
    """Factory-only memberships; cheaper, but misses allowlist-only vaults."""
    return await _reconcile(user, factory_adapters)


@app.get("/check-membership", response_model=CheckMembershipResponse)
async def check_membership(
    vaultAddress: str = Query(..., description="Vault address (0x...)"),
    userAddress: str = Query(..., description="Wallet address (0x...)"),
):
    """Ad hoc membership lookup for a single vault via contract reads."""
    try:
        vault = validate_address(vaultAddress, "vault address")
        user = validate_address(userAddress, "user address")
    except InvalidAddressInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        record = await asyncio.wait_for(
            snapshot_reader.read(vault, user, SourceId.CONTRACT_READ),
            timeout=SETTINGS.adapter_timeout_seconds,
        )
    except (ContractReadError, asyncio.TimeoutError) as e:
        logger.warning(f"check-membership for {vault[:10]}... failed: {e}")
        raise HTTPException(status_code=503, detail=f"Vault reads unavailable: {e}")

    fact = merge_vault([record], user)
    is_owner = fact is not None and fact.role == Role.ADMIN
    return CheckMembershipResponse(
        vaultAddress=vault,
        userAddress=user,
        isMember=fact is not None,
        isOwner=is_owner,
        role=fact.role.value if fact else Role.NONE.value,
        userBalance=str(record.user_balance or 0),
        isOnAllowlist=bool(record.is_on_allowlist),
        vaultName=fact.vault.name if fact else (record.name or "Unknown Vault"),
        vaultSymbol=fact.vault.symbol if fact else (record.symbol or "UNK"),
        totalAssets=str(record.total_assets or 0),
        totalSupply=str(record.total_supply or 0),
        isPaused=bool(record.is_paused),
        allowlistEnabled=bool(record.allowlist_enabled),
        ownerAddress=record.owner_address,
        assetAddress=record.asset_address,
    )


@app.get("/vault-tokens", response_model=VaultTokensResponse)
async def get_vault_tokens(vaultAddress: str = Query(..., description="Vault address (0x...)")):
    """Vault-held and strategy-held token balances for the admin view."""
    try:
        snapshot = await token_resolver.resolve(vaultAddress)
    except InvalidAddressInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    return VaultTokensResponse(
        vaultAddress=snapshot.vault_address,
        tokens=[
            TokenBalanceModel(
                tokenAddress=token.token_address,
                symbol=token.symbol,
                decimals=token.decimals,
                balanceRaw=str(token.balance_raw),
                balance=str(token.balance),
                source=token.source,
                strategyName=token.strategy_name,
            )
            for token in snapshot.tokens
        ],
        strategies=[
            StrategyInfoModel(name=s.name, address=s.address, assetsRaw=str(s.assets_raw))
            for s in snapshot.strategies
        ],
    )


@app.get("/members", response_model=MembersResponse)
async def get_vault_members(vaultAddress: str = Query(..., description="Vault address (0x...)")):
    """Owner, allowlisted users and funded depositors of one vault."""
    try:
        roster = await asyncio.wait_for(
            member_roster.members(vaultAddress),
            timeout=SETTINGS.adapter_timeout_seconds,
        )
    except InvalidAddressInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (AllSourcesUnavailable, RpcError, asyncio.TimeoutError) as e:
        logger.warning(f"members for {vaultAddress[:10]}... failed: {e}")
        raise HTTPException(status_code=503, detail=f"Vault members unavailable: {e}")

    scan = roster.scan_range
    return MembersResponse(
        vaultAddress=roster.vault_address,
        members=[
            VaultMemberModel(
                address=m.address,
                isActive=m.is_active,
                source=m.source,
                balance=None if m.balance is None else str(m.balance),
            )
            for m in roster.members
        ],
        totalMembers=len(roster.members),
        activeMembers=len(roster.active_members),
        scanRange=ScanRangeModel(fromBlock=str(scan.from_block), toBlock=str(scan.to_block)) if scan else None,
        partial=roster.partial,
        failedParts=list(roster.failed_parts),
    )


@app.post("/pageviews")
async def track_page_view(request: PageViewRequest):
    """Count a landing page view."""
    global pageview_count
    if request.page != "landing":
        return {"success": True, "message": "Only landing page tracked"}
    pageview_count += 1
    return {"success": True, "message": "Page view tracked successfully"}


@app.get("/pageviews/count")
async def get_page_view_count():
    return {"success": True, "count": pageview_count}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
