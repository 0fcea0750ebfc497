"""Verification answer hashing.

Answers are normalised (trimmed, lower-cased, inner whitespace collapsed),
peppered with an application secret and hashed with scrypt under a random salt.
Stored format: ``scrypt$<n>$<r>$<p>$<salt b64>$<hash b64>``.
"""

import base64
import hashlib
import hmac
import secrets

_N = 2**14
_R = 8
_P = 1
_DKLEN = 32
_SALT_BYTES = 16


def normalize_answer(answer: str) -> str:
    """Canonical form compared at verification time."""
    return " ".join(answer.strip().lower().split())


def _derive(answer: str, pepper: str, salt: bytes, n: int, r: int, p: int) -> bytes:
    peppered = hmac.new(pepper.encode(), normalize_answer(answer).encode(), hashlib.sha256)
    return hashlib.scrypt(peppered.digest(), salt=salt, n=n, r=r, p=p, dklen=_DKLEN)


def hash_answer(answer: str, pepper: str) -> str:
    """Hash a verification answer for storage.

    Args:
        answer: Claimant's free-text answer
        pepper: Application secret (settings.answer_pepper)

    Returns:
        Self-describing hash string
    """
    salt = secrets.token_bytes(_SALT_BYTES)
    digest = _derive(answer, pepper, salt, _N, _R, _P)
    return "$".join(
        [
            "scrypt",
            str(_N),
            str(_R),
            str(_P),
            base64.b64encode(salt).decode(),
            base64.b64encode(digest).decode(),
        ]
    )


def verify_answer(answer: str, stored: str, pepper: str) -> bool:
    """Check an answer against a stored hash in constant time.

    Malformed hashes never verify.
    """
    parts = stored.split("$")
    if len(parts) != 6 or parts[0] != "scrypt":
        return False
    try:
        n, r, p = int(parts[1]), int(parts[2]), int(parts[3])
        salt = base64.b64decode(parts[4])
        expected = base64.b64decode(parts[5])
    except ValueError:
        return False

    actual = _derive(answer, pepper, salt, n, r, p)
    return hmac.compare_digest(actual, expected)
