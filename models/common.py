"""
Shared helpers for table models.
"""

import secrets
import time


def generate_id() -> str:
    """
    Generate an opaque record id.

    Base-36 millisecond timestamp followed by a random base-36 suffix,
    e.g. "mbx3k2q1a7f9c0d2".
    """
    millis = int(time.time() * 1000)
    return _to_base36(millis) + _to_base36(secrets.randbits(40)).rjust(8, "0")


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
