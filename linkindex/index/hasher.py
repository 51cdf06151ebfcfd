"""
Content-addressed index keys.

Original URLs and aliases are variable-length and may contain characters that
are awkward in a key space, so they are never used as keys directly. Each is
reduced to a SHA-256 hex digest: fixed width (64 chars), deterministic, and
collision-resistant.
"""

import hashlib


def hash_key(value: str) -> str:
    """
    Return the SHA-256 hex digest of `value` (UTF-8).

    The empty string is a valid input; its digest is the stable key for
    "no alias supplied" and differs from the digest of every non-empty string.

    >>> hash_key("")[:16]
    'e3b0c44298fc1c14'
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
