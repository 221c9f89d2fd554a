"""Signing strategies and the ordered fallback policy that selects them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

import structlog

from shareswap.chain.wallet import map_wallet_error
from shareswap.exceptions import (
    InvalidSignatureShape,
    ShareSwapError,
    SignatureServiceUnavailable,
)
from shareswap.execution.models import Direction, Issuer, OnChainTerms, SignedAuthorization
from shareswap.signing.service import SessionCredential, SigningServiceClient
from shareswap.signing.typed_data import SettlementDomain, build_typed_data
from shareswap.utils.logging import redact

if TYPE_CHECKING:
    from shareswap.chain.wallet import Wallet

logger = structlog.get_logger()

SIGNATURE_BYTES = 65
_HEX = re.compile(r"^[0-9a-fA-F]*$")


def validate_signature_shape(signature: object) -> str:
    """Accept only a 0x-prefixed hex string encoding exactly 65 bytes."""
    if not isinstance(signature, str) or not signature:
        raise InvalidSignatureShape("signature is empty")
    if not signature.startswith("0x"):
        raise InvalidSignatureShape("signature is not 0x-prefixed")
    body = signature[2:]
    if not _HEX.match(body):
        raise InvalidSignatureShape("signature is not hex")
    if len(body) != SIGNATURE_BYTES * 2:
        raise InvalidSignatureShape(
            f"signature is {len(body) // 2} bytes, expected {SIGNATURE_BYTES}"
        )
    return signature


@dataclass(frozen=True, slots=True)
class SigningRequest:
    direction: Direction
    signer: str
    terms: OnChainTerms
    nonce: int
    domain: SettlementDomain


class SigningStrategy(Protocol):
    name: str

    def supports(self, request: SigningRequest) -> bool: ...

    async def sign(self, request: SigningRequest) -> SignedAuthorization: ...


class BackendSigningStrategy:
    """Trusted service path. The service is the nonce authority here."""

    name = "backend"

    def __init__(
        self,
        service: SigningServiceClient,
        credential: Callable[[], Optional[SessionCredential]],
    ) -> None:
        self.service = service
        self._credential = credential

    def supports(self, request: SigningRequest) -> bool:
        return request.direction is Direction.BUY

    async def sign(self, request: SigningRequest) -> SignedAuthorization:
        credential = self._credential()
        if credential is None or not credential.is_valid():
            raise SignatureServiceUnavailable("no valid session credential")

        terms = request.terms
        prepared = await self.service.prepare_signature(
            credential,
            asset_ids=terms.asset_ids,
            amounts=terms.amounts,
            max_currency_spend=terms.bound,
            deadline=terms.deadline,
        )
        # A malformed backend answer is a service failure; the policy moves on.
        try:
            signature = validate_signature_shape(prepared.signature)
        except InvalidSignatureShape as exc:
            raise SignatureServiceUnavailable(f"malformed signature: {exc}") from exc
        payload = build_typed_data(
            request.direction, request.domain, request.signer, terms, prepared.nonce
        )
        return SignedAuthorization(
            payload=payload,
            signature=signature,
            nonce=prepared.nonce,
            issuer=Issuer.BACKEND_ISSUED,
            signer=request.signer,
            settlement_contract=request.domain.verifying_contract,
            terms=terms,
            external_ref=prepared.external_ref,
        )


class LocalWalletSigningStrategy:
    """Builds the typed data locally and asks the holder's wallet to sign it."""

    name = "local_wallet"

    def __init__(self, wallet: "Wallet") -> None:
        self.wallet = wallet

    def supports(self, request: SigningRequest) -> bool:
        return self.wallet.address.lower() == request.signer.lower()

    async def sign(self, request: SigningRequest) -> SignedAuthorization:
        payload = build_typed_data(
            request.direction, request.domain, request.signer, request.terms, request.nonce
        )
        try:
            raw = await self.wallet.sign_typed_data(payload)
        except ShareSwapError:
            raise
        except Exception as exc:
            raise map_wallet_error(exc) from exc
        signature = validate_signature_shape(raw)
        return SignedAuthorization(
            payload=payload,
            signature=signature,
            nonce=request.nonce,
            issuer=Issuer.LOCALLY_SIGNED,
            signer=request.signer,
            settlement_contract=request.domain.verifying_contract,
            terms=request.terms,
        )


class SigningPolicy:
    """Tries strategies in order; only a service failure moves to the next one.

    Wallet rejection and an invalid local signature shape are terminal.
    """

    def __init__(self, strategies: Sequence[SigningStrategy]) -> None:
        if not strategies:
            raise ValueError("at least one signing strategy is required")
        self.strategies = list(strategies)

    async def sign(self, request: SigningRequest) -> SignedAuthorization:
        last_error: Optional[SignatureServiceUnavailable] = None
        for strategy in self.strategies:
            if not strategy.supports(request):
                logger.debug("signing_strategy_skipped", strategy=strategy.name)
                continue
            try:
                auth = await strategy.sign(request)
            except SignatureServiceUnavailable as exc:
                logger.warning(
                    "signature_fallback",
                    strategy=strategy.name,
                    error=str(exc),
                )
                last_error = exc
                continue
            logger.info(
                "authorization_signed",
                strategy=strategy.name,
                signer=request.signer,
                nonce=auth.nonce,
                issuer=auth.issuer.value,
                signature=redact(auth.signature),
            )
            return auth

        raise SignatureServiceUnavailable(
            f"no signing strategy succeeded: {last_error}" if last_error
            else "no signing strategy supports this request"
        )
