"""Anonymous voter identity derived from request metadata."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from onair.utils.hash import SUPPORTED_ALGORITHMS, hexdigest

UNKNOWN_ADDRESS = "unknown"
FIELD_DELIMITER = "|"


@dataclass(frozen=True)
class RequestMetadata:
    """Transport and header fields a fingerprint is computed from.

    Every field is optional; absent values count as empty strings.
    """

    forwarded_for: str | None = None
    real_ip: str | None = None
    peer_address: str | None = None
    user_agent: str | None = None
    accept_language: str | None = None
    accept_encoding: str | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        peer_address: str | None = None,
    ) -> RequestMetadata:
        lowered = {str(key).lower(): value for key, value in headers.items()}
        return cls(
            forwarded_for=lowered.get("x-forwarded-for"),
            real_ip=lowered.get("x-real-ip"),
            peer_address=peer_address,
            user_agent=lowered.get("user-agent"),
            accept_language=lowered.get("accept-language"),
            accept_encoding=lowered.get("accept-encoding"),
        )


class FingerprintGenerator:
    """Derive a stable, opaque voter identity without requiring login.

    Callers behind the same NAT address with an identical browser
    configuration collapse onto one identity. That false merge is accepted.
    """

    def __init__(self, algorithm: str = "sha256", *, trust_proxy_headers: bool = True) -> None:
        if algorithm.lower() not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}")
        self.algorithm = algorithm.lower()
        self.trust_proxy_headers = trust_proxy_headers

    def client_address(self, meta: RequestMetadata) -> str:
        """Return the caller's network address, or ``"unknown"``. Never raises."""
        if self.trust_proxy_headers:
            if meta.forwarded_for:
                first = meta.forwarded_for.split(",")[0].strip()
                if first:
                    return first
            if meta.real_ip and meta.real_ip.strip():
                return meta.real_ip.strip()
        if meta.peer_address:
            return meta.peer_address
        return UNKNOWN_ADDRESS

    def fingerprint(self, meta: RequestMetadata) -> str:
        """Hex digest of address, user agent, language and encoding."""
        material = FIELD_DELIMITER.join(
            [
                self.client_address(meta),
                meta.user_agent or "",
                meta.accept_language or "",
                meta.accept_encoding or "",
            ]
        )
        return hexdigest(material, self.algorithm)
