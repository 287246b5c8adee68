"""Anti-forgery (XSRF) token lifecycle.

Single Responsibility: This module issues, reads, validates and destroys the
per-session token that ties a form submission to the session that rendered
the form.

Dependency Inversion: The manager never reads request or session globals.
It is handed a TokenStore (session side) and a mapping of submitted form
fields (request side).

Each scope holds a single token. Issuing a new one replaces the old one, so
two forms rendered at the same time for one session invalidate each other
and only the most recently rendered form can be submitted.
"""

import hashlib
import hmac
import secrets
import threading
import time
from collections.abc import Mapping, MutableMapping
from typing import Protocol

from sqlalchemy.orm import Session

from fastsecure.config import (
    TOKEN_POST_KEY,
    TOKEN_SALT,
    TOKEN_SEED_LENGTH,
    TOKEN_SESSION_ARRAY,
    TOKEN_SESSION_KEY,
    TOKEN_TTL_SECONDS,
)
from fastsecure.logging import logger
from fastsecure.sql_db import crud

TOKEN_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ:;.,<>?/~!@#$%^&*()_+"

SESSION_LOCK_STRIPES = 64

# Fixed pool; session ids are client driven and unbounded
_session_locks = tuple(threading.Lock() for _ in range(SESSION_LOCK_STRIPES))


def get_session_lock(session_id: str) -> threading.Lock:
    """Get the lock stripe guarding writes for a session."""
    return _session_locks[hash(session_id) % SESSION_LOCK_STRIPES]


def create_token(salt: str = TOKEN_SALT) -> str:
    """Create a 40 character hex token.

    SHA-1 over a random character seed, the current time, a random integer
    and the install-wide salt.
    """
    seed = "".join(secrets.choice(TOKEN_CHARS) for _ in range(TOKEN_SEED_LENGTH))
    material = f"{seed}{time.time()}{secrets.randbelow(2**31)}{salt}"
    return hashlib.sha1(material.encode("utf-8")).hexdigest()


def tokens_match(submitted: str, stored: str) -> bool:
    """Compare two tokens in constant time."""
    return hmac.compare_digest(
        submitted.encode("utf-8", errors="surrogatepass"),
        stored.encode("utf-8", errors="surrogatepass"),
    )


class TokenStore(Protocol):
    """Session-scoped storage: scope -> {name: value} for the current caller."""

    def ensure_scope(self, scope: str) -> None: ...

    def get(self, scope: str, name: str) -> str | None: ...

    def set(self, scope: str, name: str, value: str) -> None: ...

    def delete(self, scope: str, name: str) -> bool: ...


class DictTokenStore:
    """TokenStore over a plain session mapping, e.g. a framework session dict."""

    def __init__(self, session: MutableMapping):
        self.session = session

    def ensure_scope(self, scope: str) -> None:
        self.session.setdefault(scope, {})

    def get(self, scope: str, name: str) -> str | None:
        return self.session.get(scope, {}).get(name)

    def set(self, scope: str, name: str, value: str) -> None:
        self.session.setdefault(scope, {})[name] = value

    def delete(self, scope: str, name: str) -> bool:
        tokens = self.session.get(scope, {})
        if name in tokens:
            del tokens[name]
            return True
        return False


class SqlTokenStore:
    """TokenStore persisted in the ``tokenentry`` table, keyed by session id.

    Scopes exist implicitly as row prefixes, so ``ensure_scope`` has nothing
    to create and can never overwrite existing tokens. Rows older than
    *max_age* seconds read as absent.
    """

    def __init__(self, db: Session, session_id: str, max_age: int = TOKEN_TTL_SECONDS):
        self.db = db
        self.session_id = session_id
        self.max_age = max_age

    def ensure_scope(self, scope: str) -> None:
        return None

    def get(self, scope: str, name: str) -> str | None:
        entry = crud.find_token_entry(self.db, self.session_id, scope, name)
        if entry is None or entry.issued_at < crud.expiry_cutoff(self.max_age):
            return None
        return entry.value

    def set(self, scope: str, name: str, value: str) -> None:
        with get_session_lock(self.session_id):
            crud.set_token_entry(self.db, self.session_id, scope, name, value)

    def delete(self, scope: str, name: str) -> bool:
        with get_session_lock(self.session_id):
            return crud.delete_token_entry(self.db, self.session_id, scope, name)


class TokenManager:
    """Issue and check anti-forgery tokens for one token scope."""

    def __init__(
        self,
        store: TokenStore,
        submitted: Mapping[str, str] | None = None,
        session_key: str | None = None,
        post_key: str | None = None,
        session_array: str | None = None,
    ):
        self.store = store
        self.submitted = submitted if submitted is not None else {}
        self.session_key = session_key or TOKEN_SESSION_KEY
        self.post_key = post_key or TOKEN_POST_KEY
        self.session_array = session_array or TOKEN_SESSION_ARRAY

        self.store.ensure_scope(self.session_array)

    def generate_token(self) -> str:
        """Create a token and store it, replacing any previous one."""
        token = create_token()
        self.store.set(self.session_array, self.session_key, token)
        logger.debug(f"Issued XSRF token for scope {self.session_array}/{self.session_key}")
        return token

    def get_token(self) -> str | None:
        """Return the stored token, or None if none has been issued."""
        return self.store.get(self.session_array, self.session_key)

    def submitted_token(self) -> str | None:
        return self.submitted.get(self.post_key)

    def token_is_set(self) -> bool:
        """True when both the submitted and the stored token are present."""
        return self.submitted_token() is not None and self.get_token() is not None

    def token_is_valid(self) -> bool:
        """True when both tokens are present and equal."""
        submitted = self.submitted_token()
        stored = self.get_token()
        if submitted is None or stored is None:
            return False
        if not isinstance(submitted, str):
            return False
        return tokens_match(submitted, stored)

    def destroy_token(self) -> bool:
        """Remove the stored token; False if there was none."""
        removed = self.store.delete(self.session_array, self.session_key)
        if removed:
            logger.debug(f"Destroyed XSRF token for scope {self.session_array}/{self.session_key}")
        return removed
