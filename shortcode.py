"""Short code generation and URL helpers.

Two generators share the same contract: the result has exactly ``length``
characters drawn from ALPHABET. Neither checks the store; callers own
uniqueness (see crud.create_url).

    >>> len(generate_short_code())
    6
    >>> set(generate_secure_short_code(20)) <= set(ALPHABET)
    True
"""

import os
import random
import string
from typing import Callable
from urllib.parse import urlparse

ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
DEFAULT_CODE_LENGTH = 6
DEFAULT_DOMAIN = "short.ly"


def generate_short_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Random code from the general-purpose PRNG."""
    return "".join(random.choices(ALPHABET, k=length))


def generate_secure_short_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """
    Random code from the OS entropy source. Each byte is reduced modulo the
    alphabet size, so the first 256 % 62 characters are slightly favoured.
    """
    return "".join(ALPHABET[byte % len(ALPHABET)] for byte in os.urandom(length))


def get_code_generator() -> Callable[[], str]:
    """
    Returns a zero-argument generator configured by SHORT_CODE_STRATEGY
    ("random" or "secure") and SHORT_CODE_LENGTH.
    """
    strategy = os.environ.get("SHORT_CODE_STRATEGY", "random").lower()
    length = int(os.environ.get("SHORT_CODE_LENGTH", DEFAULT_CODE_LENGTH))
    if strategy == "secure":
        return lambda: generate_secure_short_code(length)
    if strategy != "random":
        raise ValueError(f"Unknown SHORT_CODE_STRATEGY: {strategy!r}")
    return lambda: generate_short_code(length)


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def build_short_url(short_code: str) -> str:
    domain = os.environ.get("DEFAULT_DOMAIN", DEFAULT_DOMAIN)
    return f"https://{domain}/{short_code}"
