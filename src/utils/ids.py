"""Identifier minting for form sessions and submissions.

Ids are correlation handles passed through URLs and logs, not secrets:
a millisecond timestamp keeps them roughly sortable and a short random
suffix keeps two ids minted in the same millisecond apart.
"""

import random
import string
import threading
import time

FORM_PREFIX = "form"
SUBMISSION_PREFIX = "sub"

_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 7

_lock = threading.Lock()
_last_millis = 0


def _next_millis() -> int:
    """Return a millisecond timestamp that never decreases within the process."""
    global _last_millis
    with _lock:
        now = time.time_ns() // 1_000_000
        _last_millis = max(now, _last_millis)
        return _last_millis


def new_id(prefix: str) -> str:
    """Mint a new identifier.

    Args:
        prefix: Short tag identifying the kind of object, e.g. ``"form"``.

    Returns:
        Identifier of the form ``{prefix}_{millis}_{suffix}``.
    """
    suffix = "".join(random.choices(_ALPHABET, k=_SUFFIX_LENGTH))
    return f"{prefix}_{_next_millis()}_{suffix}"


def new_form_id() -> str:
    return new_id(FORM_PREFIX)


def new_submission_id() -> str:
    return new_id(SUBMISSION_PREFIX)
