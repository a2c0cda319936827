"""Scoped key/value storage with explicit TTLs.

The OAuth flow only talks to :class:`ScopedStore`. ``CookieStore`` keeps
values in browser cookies (reads come from the request, writes are queued and
applied to whatever response is sent). ``MemoryStore`` keeps them in-process.
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from flask import Response

logger = logging.getLogger(__name__)


class ScopedStore(ABC):
    """Minimal key/value interface used by the auth flow."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or ``None`` if absent or expired."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: int, *, http_only: bool = True) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; no-op if absent."""


@dataclass
class _CookieOp:
    key: str
    value: Optional[str] = None
    ttl: int = 0
    http_only: bool = True

    @property
    def is_delete(self) -> bool:
        return self.value is None


class CookieStore(ScopedStore):
    """Cookie-backed store bound to a single request/response cycle."""

    def __init__(self, cookies: Mapping[str, str], *, secure: bool = False, path: str = "/"):
        self._values: Dict[str, str] = dict(cookies)
        self._pending: List[_CookieOp] = []
        self.secure = secure
        self.path = path

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key) or None

    def set(self, key: str, value: str, ttl: int, *, http_only: bool = True) -> None:
        self._values[key] = value
        self._pending.append(_CookieOp(key=key, value=value, ttl=ttl, http_only=http_only))

    def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._pending.append(_CookieOp(key=key))

    def apply(self, response: Response) -> Response:
        """Write queued cookie changes onto ``response``."""

        for op in self._pending:
            if op.is_delete:
                response.delete_cookie(op.key, path=self.path)
            else:
                response.set_cookie(
                    op.key,
                    op.value,
                    max_age=op.ttl,
                    path=self.path,
                    secure=self.secure,
                    httponly=op.http_only,
                    samesite="Lax",
                )
        logger.debug("Applied %d cookie change(s)", len(self._pending))
        self._pending.clear()
        return response


class MemoryStore(ScopedStore):
    """In-process store honouring TTLs; a server-side alternative to cookies."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def set(self, key: str, value: str, ttl: int, *, http_only: bool = True) -> None:
        self._data[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


__all__ = ["ScopedStore", "CookieStore", "MemoryStore"]
