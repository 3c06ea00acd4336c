"""Exception hierarchy shared by the validators, runner and launcher."""

from __future__ import annotations


class SafePlugError(Exception):
    """Base exception for SafePlug errors."""


class ValidationError(SafePlugError, ValueError):
    """Raised when an untrusted value fails a validator."""

    def __init__(self, kind: str, value: str, reason: str) -> None:
        super().__init__(f"Rejected {kind} {value!r}: {reason}")
        self.kind = kind
        self.value = value
        self.reason = reason


class UnsafeURLError(ValidationError):
    """Raised when a registry or dependency URL is rejected.

    Always fatal for the operation that triggered it: no clone or fetch
    happens after this is raised.
    """

    def __init__(self, value: str, reason: str) -> None:
        super().__init__("url", value, reason)


class ArgumentValidationError(SafePlugError, ValueError):
    """Raised when caller-supplied plugin arguments don't match the schema."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ManifestError(SafePlugError):
    """Raised when a plugin manifest is missing or malformed."""


class PluginNotFoundError(SafePlugError):
    """Raised when a plugin or command doesn't exist in the project."""


class RegistryError(SafePlugError):
    """Raised when a registry clone or install step fails."""


class LaunchError(SafePlugError):
    """Base class for failures while launching a plugin script."""

    hint: str = ""

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message}\n→ {self.hint}"
        return message


class ScriptNotFoundError(LaunchError):
    """The command's script file doesn't exist."""

    hint = "Make sure the script exists and matches the 'script' field in manifest.toml."


class RuntimeNotFoundError(LaunchError):
    """The plugin runtime binary isn't installed or isn't on PATH."""

    hint = "Install Deno (https://deno.land) or set runtime.binary in safeplug.yaml."


class DependencyCacheError(LaunchError):
    """The runtime failed to fetch a declared dependency."""

    hint = "Check the URLs under [deno_dependencies] in manifest.toml."


class PluginExecutionError(LaunchError):
    """The plugin process exited with a non-zero status."""

    hint = "Check the plugin output above for details."

    def __init__(self, message: str, returncode: int) -> None:
        super().__init__(message)
        self.returncode = returncode
