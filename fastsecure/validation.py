"""Input sanitization and filename checks.

Single Responsibility: This module turns untrusted filenames into a single
safe path segment and answers the yes/no questions the download guard asks
about it (extension, name list, presence on disk).
"""

import os

# Applied in order, one full pass each, against the result of the previous
# pass. Multi-byte sequences come before the single bytes they contain.
SANITIZE_TABLE = (
    # Path traversal (../ ..\ ./ .\) and every separator
    ("../", ""),
    ("..\\", ""),
    ("./", ""),
    (".\\", ""),
    ("/", ""),
    ("\\", ""),
    # Header injection
    ("\r\n", ""),
    ("\r", ""),
    ("\n", ""),
    # Null byte poison
    ("\0", ""),
)


def sanitize(value: str) -> str:
    """Strip path traversal, header injection and null byte sequences.

    Never fails; the result may be empty. ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    result = value
    for pattern, replacement in SANITIZE_TABLE:
        result = result.replace(pattern, replacement)
    return result


def file_extension(name: str) -> str | None:
    """Return the lower-cased text after the last dot, or None without a dot."""
    if "." not in name:
        return None
    return name.rsplit(".", 1)[1].lower()


def extension_allowed(name: str, extensions) -> bool:
    """Check the extension of *name* against *extensions*, ignoring case."""
    extension = file_extension(name)
    if extension is None:
        return False
    return extension in {ext.lower() for ext in extensions}


def name_listed(name: str, names) -> bool:
    """Exact, case-sensitive membership of *name* in *names*."""
    return name in names


def file_readable(path: str) -> bool:
    """Default filesystem probe: an existing regular file this process can read."""
    return os.path.isfile(path) and os.access(path, os.R_OK)
