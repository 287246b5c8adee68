"""Application configuration loaded from environment variables.

Single Responsibility: This module is solely responsible for defining
and loading configuration values used across the application.
"""

import os

CHUNK_SIZE = int(os.environ.get("FASTSECURE_CHUNK_SIZE", 1024 * 64))

FILES_PATH = os.environ.get("FASTSECURE_FILES_PATH", os.path.join(os.path.dirname(__file__), "files"))

ALLOWED_EXTENSIONS = [
    ext.strip().lower()
    for ext in os.environ.get("FASTSECURE_ALLOWED_EXTENSIONS", "pdf,jpg,jpeg,png,gif,zip").split(",")
    if ext.strip()
]

DATABASE_URL = os.environ.get("FASTSECURE_DATABASE_URL", "sqlite:///./fastsecure.db")

# Mixed into every issued token; set a per-install value in production.
TOKEN_SALT = os.environ.get("FASTSECURE_TOKEN_SALT", "fastsecure-change-this-salt")
TOKEN_SEED_LENGTH = 15

# Stored tokens older than this are ignored and purged.
TOKEN_TTL_SECONDS = int(os.environ.get("FASTSECURE_TOKEN_TTL_SECONDS", 6 * 60 * 60))

TOKEN_SESSION_KEY = os.environ.get("FASTSECURE_TOKEN_SESSION_KEY", "XSRF_TOKEN")
TOKEN_POST_KEY = os.environ.get("FASTSECURE_TOKEN_POST_KEY", "XSRF_TOKEN")
TOKEN_SESSION_ARRAY = os.environ.get("FASTSECURE_TOKEN_SESSION_ARRAY", "XSRF_TOKENS")

SESSION_COOKIE_NAME = os.environ.get("FASTSECURE_SESSION_COOKIE_NAME", "fastsecure_session")

LOG_LEVEL = os.environ.get("FASTSECURE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
