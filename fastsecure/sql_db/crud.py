"""CRUD operations for token entries.

Single Responsibility: This module handles all database
create/read/update/delete operations for TokenEntry records.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fastsecure.sql_db import models


def utcnow() -> datetime:
    """Current UTC time without tzinfo, as stored in ``issued_at``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expiry_cutoff(max_age_seconds: int) -> datetime:
    return utcnow() - timedelta(seconds=max_age_seconds)


def find_token_entry(db: Session, session_id: str, scope: str, name: str) -> models.TokenEntry | None:
    """Find a token entry by session, scope and name."""
    return (
        db.query(models.TokenEntry)
        .filter(
            models.TokenEntry.session_id == session_id,
            models.TokenEntry.scope == scope,
            models.TokenEntry.name == name,
        )
        .first()
    )


def _insert_token_entry(db: Session, session_id: str, scope: str, name: str, value: str) -> models.TokenEntry:
    entry = models.TokenEntry(session_id=session_id, scope=scope, name=name, value=value, issued_at=utcnow())
    db.add(entry)
    return entry


def set_token_entry(db: Session, session_id: str, scope: str, name: str, value: str) -> models.TokenEntry:
    """Create or overwrite a token entry; the last write wins."""
    entry = find_token_entry(db, session_id, scope, name)
    if entry is None:
        entry = _insert_token_entry(db, session_id, scope, name, value)
        try:
            db.commit()
        except IntegrityError:
            # Another request inserted the same slot first
            db.rollback()
            entry = find_token_entry(db, session_id, scope, name)
            if entry is None:
                # ...and it was deleted again before we looked
                entry = _insert_token_entry(db, session_id, scope, name, value)
            else:
                entry.value = value
                entry.issued_at = utcnow()
            db.commit()
    else:
        entry.value = value
        entry.issued_at = utcnow()
        db.commit()
    db.refresh(entry)
    return entry


def delete_token_entry(db: Session, session_id: str, scope: str, name: str) -> bool:
    """Delete a token entry, returning whether a row was removed."""
    removed = (
        db.query(models.TokenEntry)
        .filter(
            models.TokenEntry.session_id == session_id,
            models.TokenEntry.scope == scope,
            models.TokenEntry.name == name,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed > 0


def delete_expired_token_entries(db: Session, max_age_seconds: int) -> int:
    """Delete entries issued more than *max_age_seconds* ago; return the count."""
    removed = (
        db.query(models.TokenEntry)
        .filter(models.TokenEntry.issued_at < expiry_cutoff(max_age_seconds))
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed
