from shareswap.signing.authority import SignatureAuthority
from shareswap.signing.nonce import NonceResolution, NonceResolver, NonceSource
from shareswap.signing.service import PreparedSignature, SessionCredential, SigningServiceClient
from shareswap.signing.strategies import (
    BackendSigningStrategy,
    LocalWalletSigningStrategy,
    SigningPolicy,
    SigningRequest,
    SigningStrategy,
    validate_signature_shape,
)
from shareswap.signing.typed_data import SettlementDomain, build_typed_data

__all__ = [
    "BackendSigningStrategy",
    "LocalWalletSigningStrategy",
    "NonceResolution",
    "NonceResolver",
    "NonceSource",
    "PreparedSignature",
    "SessionCredential",
    "SettlementDomain",
    "SignatureAuthority",
    "SigningPolicy",
    "SigningRequest",
    "SigningServiceClient",
    "SigningStrategy",
    "build_typed_data",
    "validate_signature_shape",
]
