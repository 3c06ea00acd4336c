"""Denylists consulted by the validators.

Every security-sensitive literal lives here so a review or an update
touches one file.
"""

from __future__ import annotations

# Literal prefixes a declared read/write path may never start with.
SENSITIVE_PATH_PREFIXES: tuple[str, ...] = (
    # Unix
    "/etc/",
    "/root/",
    "/sys/",
    "/proc/",
    "/dev/",
    "/tmp/",
    "/boot/",
    "/usr/bin/",
    "/usr/sbin/",
    "/bin/",
    "/sbin/",
    # Windows
    "C:\\Windows\\",
    "C:\\Program Files\\",
    "C:\\Users\\",
    # macOS
    "/System/",
    "/Library/",
    "/Applications/",
)

# Hosts that grant broad or loopback access.
BROAD_ACCESS_HOSTS: frozenset[str] = frozenset(
    {
        "0.0.0.0",
        "::",
        "localhost",
        "127.0.0.1",
        "::1",
    }
)

# Cloud metadata endpoints, matched exactly.
METADATA_HOSTS: frozenset[str] = frozenset(
    {
        "169.254.169.254",
        "169.254.169.254.nip.io",
        "169.254.169.254.xip.io",
        "169-254-169-254.nip.io",
        "169-254-169-254.xip.io",
        "100.100.100.200",
        "metadata.google.internal",
        "metadata.azure.com",
        "instance-data.ec2.internal",
        "metadata",
        "metadata.local",
    }
)

# Substrings that identify DNS-rebinding aliases of the metadata address.
METADATA_HOST_PATTERNS: tuple[str, ...] = (
    "169.254.169.254",
    "169-254-169-254",
)

PRIVATE_IPV4_PREFIXES: tuple[str, ...] = (
    "192.168.",
    "10.",
    *(f"172.{octet}." for octet in range(16, 32)),
)

SHELL_METACHARACTERS: frozenset[str] = frozenset("&|;><`$(){}")

DANGEROUS_COMMANDS: frozenset[str] = frozenset(
    {
        "rm",
        "del",
        "format",
        "fdisk",
        "dd",
        "mkfs",
        "sudo",
        "su",
        "chmod",
        "chown",
        "passwd",
        "curl",
        "wget",
        "nc",
        "netcat",
        "telnet",
        "ssh",
        "scp",
        "rsync",
        "ftp",
        "eval",
        "exec",
    }
)

DANGEROUS_URL_SCHEMES: frozenset[str] = frozenset({"file", "javascript", "data", "ftp", "mailto"})

REGISTRY_URL_SCHEMES: frozenset[str] = frozenset({"https", "ssh", "git"})

DEPENDENCY_URL_SCHEMES: frozenset[str] = frozenset({"https"})

# Hosts allowed to serve registries over plain http. Empty: http is
# never accepted until a host is added here.
TRUSTED_HTTP_HOSTS: frozenset[str] = frozenset()

# Characters forbidden in plugin directory names.
INVALID_PLUGIN_NAME_CHARS: frozenset[str] = frozenset('/\\:*?"<>|')
