"""Guarded file retrieval.

Single Responsibility: This module decides whether an untrusted filename
may be served from a trusted base directory and, once it may, describes
the response (header values in order plus a byte stream) without touching
the network itself.

The pipeline is sanitize -> extension check -> name list check -> existence
check, stopping at the first failure. Errors are accumulated on the guard
and never contain filesystem paths.
"""

import enum
import os
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from urllib.parse import quote

from fastsecure.config import ALLOWED_EXTENSIONS, CHUNK_SIZE
from fastsecure.logging import logger
from fastsecure.validation import extension_allowed, file_readable, name_listed, sanitize

DEFAULT_EXTENSIONS = ("pdf", "jpg", "jpeg", "png", "gif", "zip")

MEDIA_TYPE = "application/octet-stream"


class AccessError(str, enum.Enum):
    """Reasons a filename was refused. Values are safe to show to callers."""

    ILLEGAL_EXTENSION = "Illegal file extension"
    ILLEGAL_NAME = "Illegal file name"
    NOT_FOUND = "File does not exist"


class NameListMode(enum.Enum):
    """How a configured exact-name list is interpreted.

    DENY rejects names that are on the list. ALLOW rejects names that are not.
    """

    DENY = "deny"
    ALLOW = "allow"


@dataclass(frozen=True)
class Valid:
    path: str
    filename: str


@dataclass(frozen=True)
class Invalid:
    errors: tuple[AccessError, ...]


ValidationOutcome = Valid | Invalid


@dataclass
class Download:
    """Everything a response emitter needs to send a validated file."""

    filename: str
    size: int
    headers: list[tuple[str, str]]
    body: Iterator[bytes] = field(repr=False)


def read_chunks(path: str, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the raw bytes of *path* in fixed-size chunks."""
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def ascii_filename(filename: str) -> str:
    """Fallback for the plain ``filename=`` parameter: printable ASCII, no quotes."""
    return "".join(char if " " <= char <= "~" and char != '"' else "_" for char in filename)


def download_headers(filename: str, size: int) -> list[tuple[str, str]]:
    """Response headers for an attachment download, in emission order.

    Names that are not plain ASCII also get an RFC 5987 ``filename*``
    parameter so header values stay latin-1 encodable.
    """
    fallback = ascii_filename(filename)
    disposition = f'attachment; filename="{fallback}"'
    if fallback != filename:
        disposition += f"; filename*=UTF-8''{quote(filename, safe='', errors='surrogatepass')}"
    return [
        ("Content-Disposition", f"attachment; size={size}"),
        ("Content-Type", MEDIA_TYPE),
        ("Content-Transfer-Encoding", "binary"),
        ("Content-Disposition", disposition),
    ]


class FileAccessGuard:
    """Resolve a user supplied filename inside a developer supplied directory.

    ``path`` is trusted and is never sanitized, so it must never be built
    from request data. ``filename`` is untrusted.
    """

    def __init__(
        self,
        filename: str,
        path: str | None = None,
        extensions: Iterable[str] | None = None,
        names: Iterable[str] | None = None,
        name_mode: NameListMode = NameListMode.DENY,
        probe: Callable[[str], bool] = file_readable,
    ):
        self._raw_filename = filename
        self.path = path or ""
        self.extensions = frozenset(ext.lower() for ext in (extensions or ALLOWED_EXTENSIONS or DEFAULT_EXTENSIONS))
        self.names = frozenset(names) if names else frozenset()
        self.name_mode = name_mode
        self._probe = probe
        self._errors: list[AccessError] = []
        self._outcome: ValidationOutcome | None = None

    @property
    def filename(self) -> str:
        """The sanitized filename, the only form ever used past the constructor."""
        return sanitize(self._raw_filename)

    @property
    def full_path(self) -> str:
        return os.path.join(self.path, self.filename)

    @property
    def errors(self) -> list[AccessError]:
        return list(self._errors)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def _fail(self, error: AccessError) -> Invalid:
        self._errors.append(error)
        self._outcome = Invalid(tuple(self._errors))
        logger.info(f"Refused file request: {error.value}")
        return self._outcome

    def _name_refused(self, filename: str) -> bool:
        if not self.names:
            return False
        listed = name_listed(filename, self.names)
        if self.name_mode is NameListMode.DENY:
            return listed
        return not listed

    def validate(self) -> ValidationOutcome:
        """Run the checks in order and stop at the first one that fails.

        Exceptions raised by the filesystem probe are not caught.
        """
        filename = self.filename

        if not extension_allowed(filename, self.extensions):
            return self._fail(AccessError.ILLEGAL_EXTENSION)

        if self._name_refused(filename):
            return self._fail(AccessError.ILLEGAL_NAME)

        full_path = self.full_path
        if not self._probe(full_path):
            return self._fail(AccessError.NOT_FOUND)

        logger.debug(f"Validated file request for {full_path}")
        self._outcome = Valid(path=full_path, filename=filename)
        return self._outcome

    def serve(self, outcome: ValidationOutcome | None = None) -> Download | None:
        """Describe the download for a successfully validated request.

        Returns None, and reads nothing, unless this guard's latest
        ``validate()`` call succeeded (and *outcome*, when given, is that result).
        """
        current = self._outcome
        if outcome is not None and outcome is not current:
            logger.warning("Refusing to serve an outcome produced by another validation")
            return None
        if not isinstance(current, Valid) or self.has_errors():
            logger.warning("Refusing to serve a file that has not been validated")
            return None

        size = os.path.getsize(current.path)
        return Download(
            filename=current.filename,
            size=size,
            headers=download_headers(current.filename, size),
            body=read_chunks(current.path),
        )
