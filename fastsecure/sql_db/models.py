from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from fastsecure.sql_db.database import base

class TokenEntry(base):
    __tablename__ = "tokenentry"
    id = Column(Integer, primary_key=True, index=True, unique=True)
    session_id = Column(String, index=True, nullable=False)
    scope = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    value = Column(String, nullable=False)
    # Naive UTC
    issued_at = Column(DateTime, index=True, nullable=False)

    # One slot per (session, scope, name)
    __table_args__ = (UniqueConstraint('session_id', 'scope', 'name'),)
