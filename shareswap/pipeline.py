"""Composition root: wires the trade pipeline from ``config.settings``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from web3 import AsyncWeb3

from shareswap.chain.cache import ReadThroughCache
from shareswap.chain.client import Web3ChainClient
from shareswap.chain.wallet import LocalAccountWallet
from shareswap.db.submissions import SubmissionJournal
from shareswap.exceptions import ShareSwapError
from shareswap.execution.executor import TradeExecutor
from shareswap.execution.models import Direction
from shareswap.execution.reconciler import Reconciler
from shareswap.pricing.guard import PriceGuard
from shareswap.pricing.reserves import ReserveReader
from shareswap.signing.authority import SignatureAuthority
from shareswap.signing.nonce import NonceResolver
from shareswap.signing.service import SessionCredential, SigningServiceClient
from shareswap.signing.strategies import (
    BackendSigningStrategy,
    LocalWalletSigningStrategy,
    SigningPolicy,
)
from shareswap.signing.typed_data import SettlementDomain

logger = structlog.get_logger()


class CredentialHolder:
    """Holds the current signing-service session, if any."""

    def __init__(self, credential: Optional[SessionCredential] = None) -> None:
        self.credential = credential

    def __call__(self) -> Optional[SessionCredential]:
        if self.credential is not None and not self.credential.is_valid():
            return None
        return self.credential


@dataclass(slots=True)
class Pipeline:
    chain: Web3ChainClient
    wallet: LocalAccountWallet
    guard: PriceGuard
    reserves: ReserveReader
    resolver: NonceResolver
    authority: SignatureAuthority
    service: SigningServiceClient
    credentials: CredentialHolder
    journal: SubmissionJournal
    executor: TradeExecutor
    reconciler: Reconciler

    @classmethod
    def from_settings(cls, cfg: Any = None) -> "Pipeline":
        if cfg is None:
            from config.settings import settings as cfg
            from config.validators import validate_chain_config, validate_wallet

            validate_chain_config()
            validate_wallet()

        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(cfg.CHAIN_RPC_URL))
        wallet = LocalAccountWallet(
            cfg.WALLET_PRIVATE_KEY, w3, cfg.CHAIN_ID, embedded=cfg.WALLET_EMBEDDED
        )
        chain = Web3ChainClient(
            w3,
            wallet,
            pair_address=cfg.PAIR_CONTRACT_ADDRESS,
            asset_address=cfg.ASSET_CONTRACT_ADDRESS,
            currency_address=cfg.CURRENCY_TOKEN_ADDRESS,
            retry_attempts=cfg.RPC_RETRY_ATTEMPTS,
            retry_base_delay=cfg.RPC_RETRY_BASE_DELAY,
            poll_interval=cfg.RECEIPT_POLL_INTERVAL_SECONDS,
        )

        cache = ReadThroughCache(default_ttl=cfg.RESERVES_CACHE_TTL_SECONDS)
        guard = PriceGuard(
            currency_decimals=cfg.CURRENCY_DECIMALS,
            asset_decimals=cfg.ASSET_DECIMALS,
            min_slippage_bps=cfg.MIN_SLIPPAGE_BPS,
            max_slippage_bps=cfg.MAX_SLIPPAGE_BPS,
            high_impact_bps=cfg.HIGH_IMPACT_BPS,
            max_deadline_seconds=cfg.MAX_DEADLINE_SECONDS,
        )
        reserves = ReserveReader(chain, cache, ttl=cfg.RESERVES_CACHE_TTL_SECONDS)
        resolver = NonceResolver(chain, cache, ttl=cfg.NONCE_CACHE_TTL_SECONDS)

        service = SigningServiceClient(
            cfg.SIGNING_SERVICE_URL,
            timeout=cfg.SIGNING_SERVICE_TIMEOUT_SECONDS,
        )
        credentials = CredentialHolder(
            SessionCredential(token=cfg.SIGNING_SERVICE_TOKEN, wallet_address=wallet.address)
            if cfg.SIGNING_SERVICE_TOKEN else None
        )
        policy = SigningPolicy([
            BackendSigningStrategy(service, credentials),
            LocalWalletSigningStrategy(wallet),
        ])
        domains = {
            Direction.BUY: SettlementDomain(
                cfg.PAIR_DOMAIN_NAME, cfg.DOMAIN_VERSION, cfg.CHAIN_ID, cfg.PAIR_CONTRACT_ADDRESS
            ),
            Direction.SELL: SettlementDomain(
                cfg.ASSET_DOMAIN_NAME, cfg.DOMAIN_VERSION, cfg.CHAIN_ID, cfg.ASSET_CONTRACT_ADDRESS
            ),
        }
        authority = SignatureAuthority(policy, resolver, guard, domains)
        journal = SubmissionJournal(cfg.DATABASE_URL)

        executor = TradeExecutor(
            chain=chain,
            reserves=reserves,
            guard=guard,
            resolver=resolver,
            authority=authority,
            signer=wallet.address,
            currency_token=cfg.CURRENCY_TOKEN_ADDRESS,
            service=service,
            credential=credentials,
            journal=journal,
            approval_timeout=cfg.APPROVAL_TIMEOUT_SECONDS,
            confirmation_timeout=cfg.CONFIRMATION_TIMEOUT_SECONDS,
            max_submission_retries=cfg.MAX_SUBMISSION_RETRIES,
        )
        reconciler = Reconciler(chain, journal, service=service, credential=credentials)

        logger.info(
            "pipeline_ready",
            wallet=wallet.address,
            chain_id=cfg.CHAIN_ID,
            pair=cfg.PAIR_CONTRACT_ADDRESS,
            signing_service=cfg.SIGNING_SERVICE_URL,
            has_session=credentials.credential is not None,
        )
        return cls(
            chain=chain,
            wallet=wallet,
            guard=guard,
            reserves=reserves,
            resolver=resolver,
            authority=authority,
            service=service,
            credentials=credentials,
            journal=journal,
            executor=executor,
            reconciler=reconciler,
        )

    async def login(self) -> bool:
        """Obtain a signing-service session; False leaves local signing only."""
        try:
            self.credentials.credential = await self.service.authenticate(self.wallet)
        except ShareSwapError as exc:
            logger.warning("signing_service_login_failed", error=str(exc))
            return False
        return True

    async def close(self) -> None:
        await self.service.close()
