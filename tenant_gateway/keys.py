"""Map a request's host and path onto an object key in the site bucket."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote

DEFAULT_DOCUMENT = "index.html"


@dataclass(frozen=True, slots=True)
class ResolvedKey:
    tenant: str
    object_path: str

    @property
    def key(self) -> str:
        if not self.tenant:
            return self.object_path
        return f"{self.tenant}/{self.object_path}"


def extract_tenant(host_header: str | None) -> str:
    """Return the first dot-separated label of the host header, or ``""``."""
    if not host_header:
        return ""
    return host_header.split(".", 1)[0]


def decode_path(raw_path: str) -> str:
    """Strip one leading slash and percent-decode the rest as UTF-8.

    Invalid UTF-8 yields an empty path instead of an error.
    """
    trimmed = raw_path[1:] if raw_path.startswith("/") else raw_path
    try:
        return unquote(trimmed, encoding="utf-8", errors="strict")
    except UnicodeDecodeError:
        return ""


def normalize_path(path: str) -> str:
    if not path or path == DEFAULT_DOCUMENT:
        return DEFAULT_DOCUMENT
    if path.endswith("/"):
        return f"{path}{DEFAULT_DOCUMENT}"
    # No dot anywhere means a directory-style route, not a file.
    if "." not in path:
        return f"{path}/{DEFAULT_DOCUMENT}"
    return path


def resolve(host_header: str | None, raw_path: str) -> ResolvedKey:
    """Resolve a request to the object that should answer it.

    Args:
        host_header: Raw ``Host`` header value, or ``None`` when absent.
        raw_path: Percent-encoded request path, normally starting with ``/``.

    Returns:
        ResolvedKey whose ``key`` is the storage key to fetch.
    """
    return ResolvedKey(
        tenant=extract_tenant(host_header),
        object_path=normalize_path(decode_path(raw_path)),
    )
