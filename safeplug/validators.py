"""Validators for untrusted manifest input.

Each validator takes the raw string a plugin declared and either returns
the accepted (possibly normalized) value or raises ``ValidationError``
with a human-readable reason.  They are pure functions with no shared
state.

The path validator is prefix-based on purpose: it never resolves
symlinks or ``.`` segments, because canonicalizing paths that don't
exist yet has its own pitfalls.  A symlink inside the project that
points at a system file is therefore not caught here.
"""

from __future__ import annotations

import ipaddress
import re
from enum import StrEnum
from urllib.parse import urlsplit

from safeplug.denylists import (
    BROAD_ACCESS_HOSTS,
    DANGEROUS_COMMANDS,
    DANGEROUS_URL_SCHEMES,
    DEPENDENCY_URL_SCHEMES,
    METADATA_HOST_PATTERNS,
    METADATA_HOSTS,
    PRIVATE_IPV4_PREFIXES,
    REGISTRY_URL_SCHEMES,
    SENSITIVE_PATH_PREFIXES,
    SHELL_METACHARACTERS,
    TRUSTED_HTTP_HOSTS,
)
from safeplug.errors import UnsafeURLError, ValidationError


class UrlPurpose(StrEnum):
    """What a remote URL is going to be used for."""

    REGISTRY = "registry"
    DEPENDENCY = "dependency"


_HOST_CHARS = re.compile(r"^[a-z0-9._:\[\]-]+$")
_SSH_SHORTHAND = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:\S+$")
_CONTROL_CHARS = ("\x00", "\n", "\r")

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def _matches_sensitive_prefix(path: str) -> str | None:
    """Return the denylisted prefix *path* falls under, if any."""
    for prefix in SENSITIVE_PATH_PREFIXES:
        if "\\" in prefix:
            # Windows paths are case-insensitive and accept either separator.
            candidate = path.replace("/", "\\").casefold()
            folded = prefix.casefold()
            if candidate.startswith(folded) or candidate == folded.rstrip("\\"):
                return prefix
        elif path.startswith(prefix) or path == prefix.rstrip("/"):
            return prefix
    return None


def validate_path(raw: str) -> str:
    """Validate a declared read/write path.

    Args:
        raw: Path string taken from a manifest.

    Returns:
        The path, unchanged.

    Raises:
        ValidationError: If the path is empty, contains ``..``, falls under
            a sensitive system directory, or could corrupt the runtime flag.
    """
    if not raw or not raw.strip():
        raise ValidationError("path", raw, "path is empty")
    if any(ch in raw for ch in _CONTROL_CHARS):
        raise ValidationError("path", raw, "path contains control characters")
    if ".." in raw:
        raise ValidationError("path", raw, "parent-directory traversal is not allowed")
    if "," in raw:
        raise ValidationError("path", raw, "commas are not allowed in paths")
    if raw.lstrip().startswith("-"):
        raise ValidationError("path", raw, "paths may not start with '-'")

    prefix = _matches_sensitive_prefix(raw)
    if prefix is not None:
        raise ValidationError("path", raw, f"access to system directory {prefix!r} is not allowed")
    return raw


# ---------------------------------------------------------------------------
# Network hosts
# ---------------------------------------------------------------------------


def _split_port(host: str) -> tuple[str, str | None]:
    """Split ``host[:port]`` into its parts.  Bracketed IPv6 is supported."""
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            return host, None
        rest = host[end + 1 :]
        return host[1:end], rest[1:] if rest.startswith(":") else None
    if host.count(":") == 1:
        name, port = host.split(":")
        return name, port
    return host, None


def _is_internal_ip(name: str) -> bool:
    try:
        ip = ipaddress.ip_address(name)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_loopback or ip.is_link_local or ip.is_unspecified or ip.is_private


def validate_host(raw: str) -> str:
    """Validate a declared network host.

    The host is trimmed and lowercased.  An optional ``:port`` suffix is
    kept in the returned value but ignored when checking the denylists.

    Raises:
        ValidationError: For wildcards, loopback/broad addresses, cloud
            metadata endpoints and private address ranges.
    """
    host = raw.strip().lower()
    if not host:
        raise ValidationError("host", raw, "host is empty")
    if "*" in host:
        raise ValidationError("host", raw, "wildcards are not allowed")
    if not _HOST_CHARS.match(host):
        raise ValidationError("host", raw, "host contains invalid characters")
    if host.startswith("-"):
        raise ValidationError("host", raw, "hosts may not start with '-'")

    name, port = _split_port(host)
    if not name:
        raise ValidationError("host", raw, "host is empty")
    if port is not None and not port.isdigit():
        raise ValidationError("host", raw, f"invalid port {port!r}")

    if name in BROAD_ACCESS_HOSTS:
        raise ValidationError("host", raw, "broad or loopback network access is not allowed")
    if name in METADATA_HOSTS or any(p in name for p in METADATA_HOST_PATTERNS):
        raise ValidationError("host", raw, "cloud metadata endpoints are not allowed")
    if name.startswith(PRIVATE_IPV4_PREFIXES):
        raise ValidationError("host", raw, "private network ranges are not allowed")
    if _is_internal_ip(name):
        raise ValidationError("host", raw, "internal IP addresses are not allowed")
    return host


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def validate_command(raw: str) -> str:
    """Validate a declared executable name.

    Only a single token is accepted: no arguments, no chaining, no
    substitution.  Inherently dangerous executables are denied by
    basename, so ``/bin/rm`` is rejected the same as ``rm``.

    Raises:
        ValidationError: If the command is unsafe.
    """
    if not raw or not raw.strip():
        raise ValidationError("command", raw, "command is empty")
    if any(ch.isspace() for ch in raw):
        raise ValidationError("command", raw, "commands may not contain whitespace or arguments")
    bad = sorted(SHELL_METACHARACTERS.intersection(raw))
    if bad:
        chars = "".join(bad)
        raise ValidationError("command", raw, f"shell metacharacters {chars!r} are not allowed")
    if "," in raw:
        raise ValidationError("command", raw, "commas are not allowed in commands")
    if raw.startswith("-"):
        raise ValidationError("command", raw, "commands may not start with '-'")

    basename = re.split(r"[\\/]", raw)[-1].lower().removesuffix(".exe")
    if basename in DANGEROUS_COMMANDS:
        raise ValidationError("command", raw, f"{basename!r} is on the dangerous command list")
    return raw


# ---------------------------------------------------------------------------
# Remote URLs
# ---------------------------------------------------------------------------


def validate_url(raw: str, purpose: UrlPurpose) -> str:
    """Validate a registry or dependency URL before anything is fetched.

    Callers must treat a rejection as fatal for the whole operation.

    Args:
        raw: The URL as written in config or a manifest.
        purpose: ``REGISTRY`` for git sources, ``DEPENDENCY`` for code
            the runtime will download and execute.

    Returns:
        The URL with surrounding whitespace removed.

    Raises:
        UnsafeURLError: If the URL is empty, malformed, uses a dangerous
            or disallowed scheme, or points at an internal host.
    """
    value = raw.strip() if raw else ""
    if not value:
        raise UnsafeURLError(raw, "URL is empty")
    if any(ch.isspace() for ch in value):
        raise UnsafeURLError(raw, "URL contains whitespace")

    if "://" not in value and _SSH_SHORTHAND.match(value):
        if purpose is UrlPurpose.DEPENDENCY:
            raise UnsafeURLError(raw, "dependencies must use https")
        return value

    try:
        parts = urlsplit(value)
        hostname = parts.hostname
        parts.port  # noqa: B018 - raises ValueError on a malformed port
    except ValueError as exc:
        raise UnsafeURLError(raw, f"URL could not be parsed: {exc}") from exc

    scheme = parts.scheme.lower()
    if not scheme:
        raise UnsafeURLError(raw, "URL has no scheme")
    if scheme in DANGEROUS_URL_SCHEMES:
        raise UnsafeURLError(raw, f"scheme {scheme!r} is not allowed")
    if not hostname:
        raise UnsafeURLError(raw, "URL has no host")

    try:
        validate_host(hostname)
    except ValidationError as exc:
        raise UnsafeURLError(raw, exc.reason) from exc

    if purpose is UrlPurpose.DEPENDENCY:
        if scheme not in DEPENDENCY_URL_SCHEMES:
            raise UnsafeURLError(raw, "dependencies must use https")
        if "../" in value or "..\\" in value or parts.path.endswith("/.."):
            raise UnsafeURLError(raw, "path traversal is not allowed in dependency URLs")
        return value

    if scheme == "http":
        if hostname in TRUSTED_HTTP_HOSTS:
            return value
        raise UnsafeURLError(raw, "registries must use https, ssh or git")
    if scheme not in REGISTRY_URL_SCHEMES:
        raise UnsafeURLError(raw, f"scheme {scheme!r} is not allowed for registries")
    return value
