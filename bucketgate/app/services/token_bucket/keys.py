"""Bucket key derivation.

Client identities are hashed with SHA-256 so Redis never holds raw API
keys or addresses.
"""

import hashlib

DEFAULT_KEY_PREFIX = "bucket"


def derive_bucket_key(identity: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Map a client identity to its namespaced bucket key.

    Args:
        identity: Opaque client identity (bearer token, principal id, ...)
        prefix: Namespace separating bucket keys from other keys in Redis

    Returns:
        ``"<prefix>:<sha256 hexdigest>"``
    """
    if not isinstance(identity, str):
        raise TypeError(f"identity must be str, not {type(identity).__name__}")
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"
