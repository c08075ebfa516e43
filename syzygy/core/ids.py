"""Identifier generation for runs, steps and database checks."""

import secrets

from .errors import SyzygyError

ID_RANDOM_BYTES = 8


def new_id(prefix: str) -> str:
    """Return a new identifier of the form ``<prefix>_<16 hex chars>``.

    The suffix is 8 bytes from the OS randomness source. Collisions are
    only probabilistically excluded (64-bit space), which is adequate for
    test-record identifiers but not for security tokens.

    Raises:
        SyzygyError: generation_error if no randomness source is available.
    """
    try:
        suffix = secrets.token_hex(ID_RANDOM_BYTES)
    except (NotImplementedError, OSError) as e:
        raise SyzygyError(
            "generation_error", f"failed to generate {prefix} id: {e}"
        ) from e
    return f"{prefix}_{suffix}"


__all__ = ["ID_RANDOM_BYTES", "new_id"]
