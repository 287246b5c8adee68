"""Tests for the XSRF token lifecycle and its stores."""

import re
import secrets
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from fastsecure.sql_db import crud
from fastsecure.xsrf import (
    SESSION_LOCK_STRIPES,
    DictTokenStore,
    SqlTokenStore,
    TokenManager,
    create_token,
    get_session_lock,
    tokens_match,
)

TOKEN_RE = re.compile(r"^[0-9a-f]{40}$")


@pytest.fixture
def session():
    return {}


class TestCreateToken:
    """Test token creation."""

    def test_token_is_40_hex_characters(self):
        assert TOKEN_RE.match(create_token())

    def test_tokens_differ(self):
        assert len({create_token() for _ in range(50)}) == 50

    def test_salt_changes_digest(self):
        with patch("fastsecure.xsrf.time.time", return_value=1.0), patch(
            "fastsecure.xsrf.secrets.choice", return_value="a"
        ), patch("fastsecure.xsrf.secrets.randbelow", return_value=7):
            assert create_token("one") != create_token("two")
            assert create_token("one") == create_token("one")


class TestTokensMatch:
    """Test the constant-time comparison helper."""

    def test_match(self):
        assert tokens_match("abc", "abc") is True

    def test_mismatch(self):
        assert tokens_match("abc", "abd") is False
        assert tokens_match("abc", "abcd") is False

    def test_non_ascii(self):
        assert tokens_match("ü", "ü") is True

    def test_lone_surrogate_does_not_raise(self):
        assert tokens_match("\ud800", "0" * 40) is False
        assert tokens_match("\ud800", "\ud800") is True

    def test_uses_compare_digest(self):
        with patch("fastsecure.xsrf.hmac.compare_digest", return_value=True) as mock_compare:
            assert tokens_match("x", "y") is True
            mock_compare.assert_called_once_with(b"x", b"y")


class TestTokenManager:
    """Test TokenManager against a dict-backed session."""

    def test_scope_initialized_without_overwrite(self, session):
        session["XSRF_TOKENS"] = {"XSRF_TOKEN": "existing"}
        TokenManager(DictTokenStore(session))
        assert session["XSRF_TOKENS"] == {"XSRF_TOKEN": "existing"}

    def test_scope_created_when_missing(self, session):
        TokenManager(DictTokenStore(session))
        assert session == {"XSRF_TOKENS": {}}

    def test_get_token_before_issue_is_none(self, session):
        manager = TokenManager(DictTokenStore(session))
        assert manager.get_token() is None

    def test_generate_and_get(self, session):
        manager = TokenManager(DictTokenStore(session))
        token = manager.generate_token()

        assert TOKEN_RE.match(token)
        assert manager.get_token() == token
        assert session["XSRF_TOKENS"]["XSRF_TOKEN"] == token

    def test_matching_submission_is_valid(self, session):
        token = TokenManager(DictTokenStore(session)).generate_token()
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": token})

        assert manager.token_is_set() is True
        assert manager.token_is_valid() is True

    def test_mismatched_submission_is_invalid(self, session):
        TokenManager(DictTokenStore(session)).generate_token()
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": "0" * 40})

        assert manager.token_is_set() is True
        assert manager.token_is_valid() is False

    def test_missing_submission(self, session):
        manager = TokenManager(DictTokenStore(session), {})
        manager.generate_token()

        assert manager.token_is_set() is False
        assert manager.token_is_valid() is False

    def test_missing_session_token(self, session):
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": "anything"})

        assert manager.token_is_set() is False
        assert manager.token_is_valid() is False

    def test_empty_strings_are_present_but_must_match(self, session):
        session["XSRF_TOKENS"] = {"XSRF_TOKEN": ""}
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": ""})
        assert manager.token_is_set() is True

    def test_lone_surrogate_submission_is_invalid(self, session):
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": "\ud800"})
        manager.generate_token()

        assert manager.token_is_set() is True
        assert manager.token_is_valid() is False

    def test_non_string_submission_is_invalid(self, session):
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": 12345})
        manager.generate_token()
        assert manager.token_is_valid() is False

    def test_destroy_token(self, session):
        token = TokenManager(DictTokenStore(session)).generate_token()
        manager = TokenManager(DictTokenStore(session), {"XSRF_TOKEN": token})

        assert manager.destroy_token() is True
        assert manager.token_is_set() is False
        assert manager.get_token() is None
        assert manager.destroy_token() is False

    def test_regenerate_invalidates_previous(self, session):
        manager = TokenManager(DictTokenStore(session))
        first = manager.generate_token()
        second = manager.generate_token()

        assert first != second
        assert TokenManager(DictTokenStore(session), {"XSRF_TOKEN": first}).token_is_valid() is False
        assert TokenManager(DictTokenStore(session), {"XSRF_TOKEN": second}).token_is_valid() is True

    def test_custom_names(self, session):
        manager = TokenManager(
            DictTokenStore(session), {"csrf": "x"}, session_key="form_a", post_key="csrf", session_array="TOKENS"
        )
        token = manager.generate_token()

        assert session["TOKENS"] == {"form_a": token}
        assert manager.submitted_token() == "x"

    def test_independent_scopes(self, session):
        first = TokenManager(DictTokenStore(session), session_key="form_a")
        second = TokenManager(DictTokenStore(session), session_key="form_b")
        token_a = first.generate_token()
        token_b = second.generate_token()

        assert first.get_token() == token_a
        assert second.get_token() == token_b
        assert second.destroy_token() is True
        assert first.get_token() == token_a

    def test_sessions_are_isolated(self):
        alice, bob = {}, {}
        token = TokenManager(DictTokenStore(alice)).generate_token()

        assert TokenManager(DictTokenStore(bob)).get_token() is None
        assert TokenManager(DictTokenStore(bob), {"XSRF_TOKEN": token}).token_is_valid() is False


class TestSqlTokenStore:
    """Test the database backed store."""

    def test_round_trip(self, db):
        session_id = secrets.token_hex(32)
        manager = TokenManager(SqlTokenStore(db, session_id))

        assert manager.get_token() is None
        token = manager.generate_token()
        assert manager.get_token() == token

        checker = TokenManager(SqlTokenStore(db, session_id), {"XSRF_TOKEN": token})
        assert checker.token_is_valid() is True

        assert manager.destroy_token() is True
        assert manager.get_token() is None
        assert manager.destroy_token() is False

    def test_overwrite_keeps_single_row(self, db):
        session_id = secrets.token_hex(32)
        store = SqlTokenStore(db, session_id)
        store.set("XSRF_TOKENS", "XSRF_TOKEN", "first")
        store.set("XSRF_TOKENS", "XSRF_TOKEN", "second")

        assert store.get("XSRF_TOKENS", "XSRF_TOKEN") == "second"
        entry = crud.find_token_entry(db, session_id, "XSRF_TOKENS", "XSRF_TOKEN")
        assert entry.value == "second"

    def test_sessions_are_isolated(self, db):
        alice = SqlTokenStore(db, secrets.token_hex(32))
        bob = SqlTokenStore(db, secrets.token_hex(32))
        alice.set("XSRF_TOKENS", "XSRF_TOKEN", "alice-token")

        assert bob.get("XSRF_TOKENS", "XSRF_TOKEN") is None
        assert bob.delete("XSRF_TOKENS", "XSRF_TOKEN") is False
        assert alice.get("XSRF_TOKENS", "XSRF_TOKEN") == "alice-token"

    def test_session_lock_is_stable_per_session(self):
        assert get_session_lock("a") is get_session_lock("a")

    def test_session_locks_are_bounded(self):
        locks = {id(get_session_lock(secrets.token_hex(32))) for _ in range(1000)}
        assert len(locks) <= SESSION_LOCK_STRIPES

    def test_expired_entry_reads_as_absent(self, db):
        session_id = secrets.token_hex(32)
        store = SqlTokenStore(db, session_id, max_age=60)
        store.set("XSRF_TOKENS", "XSRF_TOKEN", "old-token")
        entry = crud.find_token_entry(db, session_id, "XSRF_TOKENS", "XSRF_TOKEN")
        entry.issued_at = crud.utcnow() - timedelta(seconds=120)
        db.commit()

        assert store.get("XSRF_TOKENS", "XSRF_TOKEN") is None
        checker = TokenManager(SqlTokenStore(db, session_id, max_age=60), {"XSRF_TOKEN": "old-token"})
        assert checker.token_is_valid() is False

    def test_overwrite_refreshes_issue_time(self, db):
        session_id = secrets.token_hex(32)
        store = SqlTokenStore(db, session_id, max_age=60)
        store.set("XSRF_TOKENS", "XSRF_TOKEN", "old-token")
        entry = crud.find_token_entry(db, session_id, "XSRF_TOKENS", "XSRF_TOKEN")
        entry.issued_at = crud.utcnow() - timedelta(seconds=120)
        db.commit()

        store.set("XSRF_TOKENS", "XSRF_TOKEN", "new-token")
        assert store.get("XSRF_TOKENS", "XSRF_TOKEN") == "new-token"


class TestTokenCrud:
    """Test token row maintenance."""

    def test_delete_expired_token_entries(self, db):
        stale_id, fresh_id = secrets.token_hex(32), secrets.token_hex(32)
        crud.set_token_entry(db, stale_id, "XSRF_TOKENS", "XSRF_TOKEN", "stale")
        crud.set_token_entry(db, fresh_id, "XSRF_TOKENS", "XSRF_TOKEN", "fresh")
        stale = crud.find_token_entry(db, stale_id, "XSRF_TOKENS", "XSRF_TOKEN")
        stale.issued_at = crud.utcnow() - timedelta(days=2)
        db.commit()

        assert crud.delete_expired_token_entries(db, 24 * 60 * 60) >= 1
        assert crud.find_token_entry(db, stale_id, "XSRF_TOKENS", "XSRF_TOKEN") is None
        assert crud.find_token_entry(db, fresh_id, "XSRF_TOKENS", "XSRF_TOKEN").value == "fresh"

    @patch("fastsecure.sql_db.crud.find_token_entry", return_value=None)
    def test_insert_race_with_concurrent_delete(self, mock_find):
        """The slot was taken by another insert and deleted again before the re-read."""
        mock_db = MagicMock()
        mock_db.commit.side_effect = [IntegrityError("INSERT", {}, Exception("unique")), None]

        entry = crud.set_token_entry(mock_db, "a" * 64, "XSRF_TOKENS", "XSRF_TOKEN", "value")

        assert entry.value == "value"
        assert mock_db.add.call_count == 2
        assert mock_db.commit.call_count == 2
        mock_db.rollback.assert_called_once()
        mock_db.refresh.assert_called_once_with(entry)

    @patch("fastsecure.sql_db.crud.find_token_entry")
    def test_insert_race_updates_existing_row(self, mock_find):
        existing = MagicMock()
        mock_find.side_effect = [None, existing]
        mock_db = MagicMock()
        mock_db.commit.side_effect = [IntegrityError("INSERT", {}, Exception("unique")), None]

        entry = crud.set_token_entry(mock_db, "a" * 64, "XSRF_TOKENS", "XSRF_TOKEN", "value")

        assert entry is existing
        assert existing.value == "value"
        assert mock_db.add.call_count == 1
