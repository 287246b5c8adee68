"""API route handlers for file downloads and XSRF tokens.

Single Responsibility: This module defines the HTTP API endpoints
and delegates the security decisions to the download and xsrf modules.

Dependency Inversion: Route handlers depend on abstractions
(the database session via FastAPI's Depends, the TokenStore protocol)
rather than concrete implementations.
"""

import re
import secrets

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from fastsecure.config import FILES_PATH, SESSION_COOKIE_NAME, TOKEN_TTL_SECONDS
from fastsecure.download import AccessError, FileAccessGuard, Invalid
from fastsecure.escape import escape
from fastsecure.logging import logger
from fastsecure.sql_db import crud
from fastsecure.sql_db.database import get_db, session_local
from fastsecure.xsrf import SqlTokenStore, TokenManager

sec = APIRouter()

_SESSION_ID_RE = re.compile(r"^[0-9a-f]{64}$")


def resolve_session_id(request: Request) -> tuple[str, bool]:
    """Return the caller's session id and whether it was just created."""
    session_id = request.cookies.get(SESSION_COOKIE_NAME, "")
    if _SESSION_ID_RE.match(session_id):
        return session_id, False
    return secrets.token_hex(32), True


def bind_session(response: Response, session_id: str, is_new: bool) -> Response:
    if is_new:
        response.set_cookie(SESSION_COOKIE_NAME, session_id, httponly=True, samesite="lax")
    return response


def build_token_manager(db: Session, session_id: str, submitted: dict | None = None) -> TokenManager:
    return TokenManager(SqlTokenStore(db, session_id), submitted)


async def read_submitted_fields(request: Request) -> dict:
    """Submitted fields from a JSON object body or a form body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def serve_file(filename: str) -> Response:
    """Core logic for validating and streaming a requested file."""
    try:
        guard = FileAccessGuard(filename, FILES_PATH)
        outcome = guard.validate()

        if isinstance(outcome, Invalid):
            status_code = 404 if AccessError.NOT_FOUND in outcome.errors else 400
            return JSONResponse(status_code=status_code, content={"errors": [error.value for error in outcome.errors]})

        download = guard.serve(outcome)
        if download is None:
            return Response(status_code=500, content="Internal server error")

        response = StreamingResponse(download.body)
        for name, value in download.headers:
            response.headers.append(name, value)

        logger.debug(f"Streaming {download.filename} ({download.size} bytes)")
        return response

    except ValueError as e:
        logger.error(f"Validation error in serve_file: {e}")
        return Response(status_code=400, content="Invalid parameters")
    except Exception as e:
        logger.error(f"Unexpected error in serve_file: {e}")
        return Response(status_code=500, content="Internal server error")


@sec.get("/download")
def download_file_query(file: str = Query(..., max_length=255)) -> Response:
    """Download a file named by the ``file`` query parameter."""
    return serve_file(file)


@sec.get("/download/{filename}")
def download_file(filename: str) -> Response:
    """Download a file named in the path."""
    return serve_file(filename)


@sec.get("/xsrf/token")
def issue_token(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> Response:
    """Issue a fresh token for the caller's session."""
    background_tasks.add_task(cleanup_expired_tokens)
    session_id, is_new = resolve_session_id(request)
    manager = build_token_manager(db, session_id)
    token = manager.generate_token()
    response = JSONResponse({"field": manager.post_key, "token": token})
    return bind_session(response, session_id, is_new)


@sec.get("/xsrf/form", response_class=HTMLResponse)
def render_form(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> Response:
    """Render a form carrying a fresh token in a hidden field."""
    background_tasks.add_task(cleanup_expired_tokens)
    session_id, is_new = resolve_session_id(request)
    manager = build_token_manager(db, session_id)
    token = manager.generate_token()
    body = (
        '<form method="post" action="/xsrf/form">'
        f'<input type="hidden" name="{escape(manager.post_key)}" value="{escape(token)}">'
        '<button type="submit">Submit</button>'
        "</form>"
    )
    return bind_session(HTMLResponse(body), session_id, is_new)


@sec.post("/xsrf/form")
async def submit_form(request: Request, db: Session = Depends(get_db)) -> Response:
    """Accept a submission only when it echoes the session's token."""
    session_id, is_new = resolve_session_id(request)
    try:
        submitted = await read_submitted_fields(request)
        manager = build_token_manager(db, session_id, submitted)
        if not manager.token_is_valid():
            logger.warning("Rejected form submission with a missing or mismatched XSRF token")
            response = JSONResponse(status_code=403, content={"status": "rejected"})
        else:
            response = JSONResponse({"status": "accepted"})
    except Exception as e:
        logger.error(f"Unexpected error in submit_form: {e}")
        response = Response(status_code=500, content="Internal server error")
    return bind_session(response, session_id, is_new)


@sec.delete("/xsrf/token")
def destroy_token(request: Request, db: Session = Depends(get_db)) -> Response:
    """Remove the caller's token."""
    session_id, is_new = resolve_session_id(request)
    manager = build_token_manager(db, session_id)
    response = JSONResponse({"destroyed": manager.destroy_token()})
    return bind_session(response, session_id, is_new)


def cleanup_expired_tokens() -> None:
    """Remove token rows that have outlived TOKEN_TTL_SECONDS."""
    db = session_local()
    try:
        removed = crud.delete_expired_token_entries(db, TOKEN_TTL_SECONDS)
        if removed:
            logger.info(f"Purged {removed} expired XSRF tokens")
    except Exception as e:
        logger.error(f"Error purging expired XSRF tokens: {e}")
    finally:
        db.close()
