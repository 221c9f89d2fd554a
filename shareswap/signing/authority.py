"""Signature authority: one signed authorization per trade attempt."""

from __future__ import annotations

from typing import Mapping, Optional, Union

import structlog

from shareswap.exceptions import ConfigError, NonceRaceError
from shareswap.execution.models import Direction, PoolQuote, SignedAuthorization, TradeIntent
from shareswap.pricing.guard import PriceGuard
from shareswap.signing.nonce import NonceResolution, NonceResolver
from shareswap.signing.strategies import SigningPolicy, SigningRequest
from shareswap.signing.typed_data import SettlementDomain

logger = structlog.get_logger()

IssuanceKey = tuple[str, str, int]


class SignatureAuthority:
    """Produces signed authorizations and refuses to sign a nonce twice.

    Every issued ``(signer, contract, nonce)`` is recorded for the lifetime of
    the process. ``release`` re-opens a nonce only for an authorization whose
    transaction never reached the network.
    """

    def __init__(
        self,
        policy: SigningPolicy,
        resolver: NonceResolver,
        guard: PriceGuard,
        domains: Mapping[Direction, SettlementDomain],
    ) -> None:
        self.policy = policy
        self.resolver = resolver
        self.guard = guard
        self.domains = dict(domains)
        self._issued: set[IssuanceKey] = set()

    @staticmethod
    def _key(signer: str, contract: str, nonce: int) -> IssuanceKey:
        return (signer.lower(), contract.lower(), nonce)

    def domain_for(self, direction: Direction) -> SettlementDomain:
        try:
            return self.domains[direction]
        except KeyError as exc:
            raise ConfigError(f"no settlement domain for {direction.value}") from exc

    def settlement_contract(self, direction: Direction) -> str:
        return self.domain_for(direction).verifying_contract

    def is_issued(self, signer: str, contract: str, nonce: int) -> bool:
        return self._key(signer, contract, nonce) in self._issued

    async def authorize(
        self,
        intent: TradeIntent,
        quote: PoolQuote,
        nonce: Union[int, NonceResolution],
        signer: str,
    ) -> SignedAuthorization:
        # Deadline and bounds are checked again at signing time.
        self.guard.validate(intent)
        terms = self.guard.on_chain_terms(intent, quote)
        domain = self.domain_for(intent.direction)
        contract = domain.verifying_contract

        value = nonce.value if isinstance(nonce, NonceResolution) else int(nonce)
        if self.is_issued(signer, contract, value):
            logger.warning("nonce_reuse_blocked", signer=signer, contract=contract, nonce=value)
            fresh = await self.resolver.resolve_for_signing(signer, contract, earlier=value)
            if self.is_issued(signer, contract, fresh.value):
                raise NonceRaceError(
                    f"nonce {fresh.value} already authorized for {signer}"
                )
            value = fresh.value

        request = SigningRequest(
            direction=intent.direction,
            signer=signer,
            terms=terms,
            nonce=value,
            domain=domain,
        )
        auth = await self.policy.sign(request)

        # The service path picks its own nonce.
        key = self._key(signer, contract, auth.nonce)
        if key in self._issued:
            raise NonceRaceError(f"signing service reissued nonce {auth.nonce}")
        self._issued.add(key)
        return auth

    def release(self, authorization: SignedAuthorization, reason: Optional[str] = None) -> None:
        """Re-open the nonce of an authorization that was never broadcast."""
        key = self._key(
            authorization.signer, authorization.settlement_contract, authorization.nonce
        )
        if key in self._issued:
            self._issued.discard(key)
            logger.info(
                "nonce_released",
                signer=authorization.signer,
                nonce=authorization.nonce,
                reason=reason,
            )
