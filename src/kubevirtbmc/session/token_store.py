"""
Session token store.

Tokens are derived from the session record itself: the SHA-256 of its
canonical JSON form. The same record therefore always yields the same
token, which keeps tokens stable across agent restarts but makes them
predictable to anyone who knows a session id and username.
"""

import hashlib
import json
from dataclasses import dataclass

from kubevirtbmc.observability.metrics import metrics_collector
from kubevirtbmc.utils.locks import ReadWriteLock

# Characters escaped in canonical JSON even though JSON allows them verbatim
_HTML_SAFE_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass(frozen=True)
class SessionRecord:
    """Session bound to an authenticated user."""

    id: str
    username: str


def canonical_json(record: SessionRecord) -> bytes:
    """
    Serialize a session record to its canonical byte form.

    The output is a compact object with keys ``ID`` then ``Username``.
    Non-ASCII text is emitted as UTF-8, except ``<``, ``>``, ``&``, U+2028
    and U+2029, which are written as ``\\uXXXX`` escapes.
    """
    text = json.dumps(
        {"ID": record.id, "Username": record.username},
        ensure_ascii=False,
        separators=(",", ":"),
    )
    for char, escape in _HTML_SAFE_ESCAPES.items():
        text = text.replace(char, escape)
    return text.encode("utf-8")


def generate_token(record: SessionRecord) -> str:
    """Return the lowercase hex SHA-256 of the record's canonical form."""
    return hashlib.sha256(canonical_json(record)).hexdigest()


class TokenStore:
    """Thread-safe mapping of session tokens to session records."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._store: dict[str, SessionRecord] = {}

    def add(self, record: SessionRecord) -> str:
        """Store a record and return its token."""
        token = generate_token(record)
        with self._lock.write_lock():
            self._store[token] = record
            count = len(self._store)
        metrics_collector.set_active_sessions(count)
        return token

    def get(self, token: str) -> tuple[SessionRecord | None, bool]:
        with self._lock.read_lock():
            record = self._store.get(token)
        return record, record is not None

    def get_by_session_id(self, session_id: str) -> tuple[SessionRecord | None, bool]:
        """Find the record of a session id; the first match wins."""
        with self._lock.read_lock():
            for record in self._store.values():
                if record.id == session_id:
                    return record, True
        return None, False

    def remove(self, token: str) -> None:
        """Drop a token; unknown tokens are ignored."""
        with self._lock.write_lock():
            self._store.pop(token, None)
            count = len(self._store)
        metrics_collector.set_active_sessions(count)

    def __contains__(self, token: object) -> bool:
        with self._lock.read_lock():
            return token in self._store

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._store)
