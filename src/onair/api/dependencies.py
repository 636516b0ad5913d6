"""Request-scoped dependencies shared by the API routers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from onair.core.settings import Settings
from onair.db.backends import StorageBackend
from onair.services.fingerprint import FingerprintGenerator, RequestMetadata
from onair.services.ledger import VoteLedger


def get_settings(request: Request) -> Settings:
    """Return the settings the running application was built with."""
    return request.app.state.settings


def get_backend(request: Request) -> StorageBackend:
    """Return the storage backend opened at startup."""
    return request.app.state.backend


SettingsDep = Annotated[Settings, Depends(get_settings)]
BackendDep = Annotated[StorageBackend, Depends(get_backend)]


def get_ledger(backend: BackendDep) -> VoteLedger:
    return VoteLedger(backend)


def get_fingerprint_generator(config: SettingsDep) -> FingerprintGenerator:
    return FingerprintGenerator(
        config.fingerprint_algorithm,
        trust_proxy_headers=config.trust_proxy_headers,
    )


def get_request_metadata(request: Request) -> RequestMetadata:
    peer = request.client.host if request.client else None
    return RequestMetadata.from_headers(request.headers, peer_address=peer)


LedgerDep = Annotated[VoteLedger, Depends(get_ledger)]
FingerprintDep = Annotated[FingerprintGenerator, Depends(get_fingerprint_generator)]
RequestMetadataDep = Annotated[RequestMetadata, Depends(get_request_metadata)]
