"""HTTP client for the trusted off-chain signing service.

The service issues BuyTokens signatures under its own nonce authority and
tracks each one as a transaction that is later confirmed with the on-chain
hash. Every transport, auth or shape failure surfaces as
``SignatureServiceUnavailable`` so the signing policy can fall back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

import httpx
import structlog

from shareswap.exceptions import ReconciliationError, SignatureServiceUnavailable
from shareswap.utils.logging import redact
from shareswap.utils.resilience import with_retry

if TYPE_CHECKING:
    from shareswap.chain.wallet import Wallet

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class SessionCredential:
    """Bearer token proving wallet ownership to the signing service."""

    token: str
    wallet_address: str = ""
    expires_at: Optional[float] = None

    def is_valid(self, now: Optional[float] = None) -> bool:
        if not self.token:
            return False
        if self.expires_at is None:
            return True
        return (time.time() if now is None else now) < self.expires_at


@dataclass(frozen=True, slots=True)
class PreparedSignature:
    signature: str
    nonce: int
    external_ref: str
    tx_data: dict[str, Any]


class SigningServiceClient:
    """Async client for the signing service REST API."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        retry_attempts: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SigningServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        credential: Optional[SessionCredential] = None,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        headers = {"Content-Type": "application/json"}
        if credential is not None:
            headers["Authorization"] = f"Bearer {credential.token}"
        url = f"{self.base_url}{path}"
        try:
            resp = await client.request(method, url, json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise SignatureServiceUnavailable(f"{path}: {exc.__class__.__name__}: {exc}") from exc

        if resp.status_code == 401:
            raise SignatureServiceUnavailable(f"{path}: credential rejected")
        if resp.status_code == 429:
            raise SignatureServiceUnavailable(f"{path}: rate limited")
        if resp.status_code >= 400:
            raise SignatureServiceUnavailable(
                f"{path}: HTTP {resp.status_code} {_error_text(resp)}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise SignatureServiceUnavailable(f"{path}: response is not JSON") from exc

    async def authenticate(self, wallet: "Wallet") -> SessionCredential:
        """Prove wallet ownership and obtain a bearer credential."""
        challenge = await self._request(
            "POST", "/api/auth/nonce", json={"walletAddress": wallet.address}
        )
        message = challenge.get("message") if isinstance(challenge, dict) else None
        if not message:
            raise SignatureServiceUnavailable("auth challenge missing message")

        signature = await wallet.sign_message(message)
        data = await self._request(
            "POST",
            "/api/auth/login",
            json={"walletAddress": wallet.address, "signature": signature, "message": message},
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise SignatureServiceUnavailable("login response missing token")

        logger.info("signing_service_authenticated", wallet=wallet.address, token=redact(token))
        return SessionCredential(token=token, wallet_address=wallet.address)

    async def prepare_signature(
        self,
        credential: SessionCredential,
        asset_ids: Sequence[int],
        amounts: Sequence[int],
        max_currency_spend: int,
        deadline: int,
    ) -> PreparedSignature:
        """Request a BuyTokens signature. The service picks the nonce."""
        request = {
            "playerTokenIds": [str(i) for i in asset_ids],
            "amounts": [str(a) for a in amounts],
            "maxCurrencySpend": str(max_currency_spend),
            "deadline": deadline,
        }
        data = await self._request(
            "POST", "/api/buyTokens/prepare-signature", credential=credential, json=request
        )
        prepared = _parse_prepared(data)
        _check_echo(request, prepared.tx_data)
        logger.info(
            "service_signature_prepared",
            external_ref=prepared.external_ref,
            nonce=prepared.nonce,
            signature=redact(prepared.signature),
        )
        return prepared

    async def confirm(
        self,
        credential: SessionCredential,
        external_ref: str,
        tx_hash: str,
    ) -> dict[str, Any]:
        """Tell the service which on-chain transaction consumed its signature."""
        try:
            data = await with_retry(
                lambda: self._request(
                    "POST",
                    f"/api/buyTokens/transaction/{external_ref}/confirm",
                    credential=credential,
                    json={"txHash": tx_hash},
                ),
                max_attempts=self.retry_attempts,
                base_delay=0.5,
                retry_on=(SignatureServiceUnavailable,),
                operation="confirm_transaction",
            )
        except SignatureServiceUnavailable as exc:
            raise ReconciliationError(str(exc)) from exc
        return data if isinstance(data, dict) else {"result": data}

    async def list_transactions(
        self,
        credential: SessionCredential,
        address: str,
        status: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        params = {"status": status} if status else None
        data = await self._request(
            "GET",
            f"/api/buyTokens/transactions/{address}",
            credential=credential,
            params=params,
        )
        if isinstance(data, dict):
            data = data.get("transactions", [])
        if not isinstance(data, list):
            raise SignatureServiceUnavailable("transactions response is not a list")
        return data


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body.get("detail") or "")
    return ""


def _parse_prepared(data: Any) -> PreparedSignature:
    if not isinstance(data, dict):
        raise SignatureServiceUnavailable("prepare-signature response is not an object")
    tx_data = data.get("txData")
    signature = data.get("signature")
    external_ref = data.get("transactionId")
    if not isinstance(tx_data, dict) or not signature or not external_ref:
        raise SignatureServiceUnavailable("prepare-signature response missing fields")
    try:
        nonce = int(tx_data["nonce"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SignatureServiceUnavailable("prepare-signature response has no nonce") from exc
    if isinstance(tx_data["nonce"], bool) or nonce < 0:
        raise SignatureServiceUnavailable(f"invalid service nonce {tx_data['nonce']!r}")
    return PreparedSignature(
        signature=str(signature),
        nonce=nonce,
        external_ref=str(external_ref),
        tx_data=tx_data,
    )


def _check_echo(request: dict[str, Any], tx_data: dict[str, Any]) -> None:
    """The echoed terms must be the terms we asked to have signed."""
    for field in ("playerTokenIds", "amounts"):
        if field in tx_data and [str(v) for v in tx_data[field]] != request[field]:
            raise SignatureServiceUnavailable(f"service echoed different {field}")
    if "maxCurrencySpend" in tx_data and str(tx_data["maxCurrencySpend"]) != request["maxCurrencySpend"]:
        raise SignatureServiceUnavailable("service echoed different maxCurrencySpend")
    if "deadline" in tx_data and str(tx_data["deadline"]) != str(request["deadline"]):
        raise SignatureServiceUnavailable("service echoed different deadline")
