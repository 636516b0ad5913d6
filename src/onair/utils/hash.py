"""Hashing helpers used for voter fingerprints."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from typing import Final

from blake3 import blake3

_HEX_DIGESTS: Final[dict[str, Callable[[bytes], str]]] = {
    "sha256": lambda data: hashlib.sha256(data).hexdigest(),
    "blake3": lambda data: blake3(data).hexdigest(),
}

SUPPORTED_ALGORITHMS: Final[frozenset[str]] = frozenset(_HEX_DIGESTS)


def hexdigest(data: bytes | str, algorithm: str = "sha256") -> str:
    """Return the hexadecimal digest of ``data`` using ``algorithm``.

    Text input is encoded as UTF-8 first.

    Raises:
        ValueError: If ``algorithm`` is not one of ``SUPPORTED_ALGORITHMS``.
    """
    try:
        digest = _HEX_DIGESTS[algorithm.lower()]
    except KeyError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from None
    payload = data.encode("utf-8") if isinstance(data, str) else data
    return digest(payload)
