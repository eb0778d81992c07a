"""PKCE (RFC 7636) verifier and challenge helpers."""

import base64
import hashlib
import secrets


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without trailing padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_verifier(length: int = 32) -> str:
    """
    Generate a PKCE code verifier.

    Args:
        length: Number of random bytes (32 yields a 43 character verifier)

    Returns:
        URL-safe base64 string without padding
    """
    if length <= 0:
        raise ValueError("length must be positive")
    return base64url_encode(secrets.token_bytes(length))


def derive_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)
