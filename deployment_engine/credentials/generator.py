# deployment_engine/credentials/generator.py
"""
Secret generation.

Two interchangeable generators back ``generate_secret``: a dedicated
password generator drawing from an alphanumeric alphabet, and a general
CSPRNG encoder that base64-encodes raw bytes and strips the symbols.
Either one satisfies the same length and alphabet contract.
"""

import base64
import logging
import os
import secrets
import string
from typing import Callable, Sequence

from deployment_engine.core.errors import EntropyUnavailable

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_letters + string.digits
DEFAULT_SECRET_LENGTH = 32
WEBHOOK_SECRET_BYTES = 32


def password_generator(length: int) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def csprng_encoder(length: int) -> str:
    out = ""
    while len(out) < length:
        raw = base64.b64encode(os.urandom(length * 2)).decode("ascii")
        out += "".join(c for c in raw if c in ALPHABET)
    return out[:length]


DEFAULT_GENERATORS = (password_generator, csprng_encoder)


def generate_secret(
    length: int = DEFAULT_SECRET_LENGTH,
    generators: Sequence[Callable[[int], str]] = DEFAULT_GENERATORS,
) -> str:
    """
    Generate an alphanumeric secret of exactly ``length`` characters.

    Raises:
        ValueError: if length is not positive
        EntropyUnavailable: if every generator fails
    """
    if length <= 0:
        raise ValueError("length must be positive")

    for generator in generators:
        try:
            value = generator(length)
        except (OSError, NotImplementedError) as e:
            logger.warning(f"Secret generator {generator.__name__} unavailable: {e}")
            continue
        if len(value) == length and all(c in ALPHABET for c in value):
            return value
        logger.warning(f"Secret generator {generator.__name__} produced an unusable value")

    raise EntropyUnavailable(
        "No secure random source available to generate a secret",
        remediation="check that the host provides /dev/urandom",
    )


def generate_hex_secret(num_bytes: int = WEBHOOK_SECRET_BYTES) -> str:
    """Hex secret (two characters per byte) used for the webhook shared secret."""
    try:
        return secrets.token_hex(num_bytes)
    except (OSError, NotImplementedError) as e:
        raise EntropyUnavailable(f"No secure random source available: {e}")
