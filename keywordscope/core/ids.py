"""Identifier utilities for research records."""

from __future__ import annotations

import secrets
import threading
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_state = {"millis": 0, "counter": 0}
_LOCK = threading.Lock()


def _to_base36(value: int) -> str:
    digits = ""
    while True:
        value, remainder = divmod(value, 36)
        digits = _ALPHABET[remainder] + digits
        if value == 0:
            return digits


def _now_millis() -> int:
    return int(time.time() * 1000)


def _next_counter(now_millis: int) -> int:
    with _LOCK:
        if now_millis == _state["millis"]:
            _state["counter"] += 1
        else:
            _state["millis"] = now_millis
            _state["counter"] = 0
        return _state["counter"]


def generate_cuid(length: int = 24) -> str:
    """Generate a time-ordered, collision-resistant id with a ``c`` prefix.

    Layout: base36 millis, 4-char base36 per-millisecond counter, random tail.
    """
    now_millis = _now_millis()
    counter = _next_counter(now_millis)

    body_len = max(length - 1, 8)
    prefix = _to_base36(now_millis) + _to_base36(counter).rjust(4, "0")
    tail_len = max(body_len - len(prefix), 0)
    tail = "".join(secrets.choice(_ALPHABET) for _ in range(tail_len))
    return f"c{(prefix + tail)[:body_len]}"
