"""Verification code generation and hashing.

Codes are 6-digit numeric strings drawn from the OS CSPRNG. Only a salted,
keyed digest is kept for matching:

    digest = HMAC-SHA256(pepper, salt || ":" || code)

The salt is random per attestation so identical codes never produce
identical digests across rows, and the pepper is process-wide
configuration that never touches the database.
"""

import hashlib
import hmac
import secrets

CODE_LENGTH = 6
SALT_BYTES = 16


def generate_code() -> str:
    """Generate a uniformly random 6-digit code ("000000" to "999999")."""
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def generate_salt() -> str:
    """Generate a random per-attestation salt (hex encoded)."""
    return secrets.token_hex(SALT_BYTES)


def is_well_formed_code(candidate: str | None) -> bool:
    """Check that a candidate is exactly six ASCII digits."""
    if not isinstance(candidate, str) or len(candidate) != CODE_LENGTH:
        return False
    return all("0" <= ch <= "9" for ch in candidate)


def hash_code(code: str, salt: str, pepper: str) -> str:
    """Compute the digest stored for a verification code.

    Args:
        code: Plaintext 6-digit code
        salt: Per-attestation salt from generate_salt()
        pepper: Process-wide secret key

    Returns:
        64-character lowercase hex digest

    Raises:
        ValueError: If salt or pepper is empty
    """
    if not salt:
        raise ValueError("salt cannot be empty")
    if not pepper:
        raise ValueError("pepper cannot be empty")

    message = f"{salt}:{code}".encode("utf-8")
    return hmac.new(pepper.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_code(candidate: str, stored_digest: str, salt: str, pepper: str) -> bool:
    """Recompute the digest for a candidate and compare in constant time.

    Malformed candidates are still hashed so the comparison path does not
    short-circuit on format.
    """
    candidate_digest = hash_code(candidate or "", salt, pepper)
    return hmac.compare_digest(candidate_digest, stored_digest or "")
