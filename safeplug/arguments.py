"""Schema-driven typing of caller-supplied plugin arguments."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from safeplug.errors import ArgumentValidationError

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


class ArgType(StrEnum):
    """Types a manifest may declare for a command argument."""

    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"


class ArgDefinition(BaseModel):
    """One declared command argument."""

    description: str = ""
    arg_type: ArgType = ArgType.STRING
    default_value: str | None = None


class CommandArgs(BaseModel):
    """Required and optional arguments of a command."""

    required: dict[str, ArgDefinition] = {}
    optional: dict[str, ArgDefinition] = {}


def parse_cli_args(tokens: list[str]) -> dict[str, str]:
    """Turn ``--key value`` / ``--key=value`` / ``--flag`` tokens into a mapping.

    A flag with no value is recorded as ``"true"``.

    Raises:
        ArgumentValidationError: If a token isn't attached to a ``--key``.
    """
    parsed: dict[str, str] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if not token.startswith("--") or token == "--":
            raise ArgumentValidationError(
                f"Unexpected argument {token!r}; plugin arguments must look like --name value"
            )
        key = token[2:]
        if "=" in key:
            key, value = key.split("=", 1)
        elif i + 1 < len(tokens) and not tokens[i + 1].startswith("--"):
            i += 1
            value = tokens[i]
        else:
            value = "true"
        parsed[key] = value
        i += 1
    return parsed


def coerce_value(value: str, arg_type: ArgType) -> Any:
    """Convert a raw string to *arg_type*.

    Raises:
        ValueError: If the string isn't a valid value of that type.
    """
    if arg_type is ArgType.BOOLEAN:
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"expected boolean value (true/false), got {value!r}")
    if arg_type is ArgType.INTEGER:
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"expected integer value, got {value!r}") from None
    if arg_type is ArgType.FLOAT:
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"expected float value, got {value!r}") from None
    return value


def suggest_similar(provided: str, known: list[str]) -> str | None:
    """Suggest a known argument name close to *provided*."""
    lowered = provided.lower()
    for name in known:
        if name.lower() in lowered or lowered in name.lower():
            return name
    for name in known:
        if name[:1] == provided[:1]:
            return name
    return None


def usage(args_def: CommandArgs, plugin_name: str, command_name: str) -> str:
    """Render a usage block for a command."""
    line = f"Usage: safeplug run {plugin_name}:{command_name}"
    for name in args_def.required:
        line += f" --{name} <value>"
    for name in args_def.optional:
        line += f" [--{name} <value>]"

    parts = [line]
    if args_def.required:
        parts.append("\n  Required:")
        for name, arg in args_def.required.items():
            parts.append(f"    --{name:15} {arg.description} ({arg.arg_type})")
    if args_def.optional:
        parts.append("\n  Optional:")
        for name, arg in args_def.optional.items():
            default = f" [default: {arg.default_value}]" if arg.default_value is not None else ""
            parts.append(f"    --{name:15} {arg.description} ({arg.arg_type}){default}")
    return "\n".join(parts)


def coerce_plugin_args(
    provided: dict[str, str],
    args_def: CommandArgs | None,
    plugin_name: str,
    command_name: str,
) -> dict[str, Any]:
    """Check *provided* against the command's schema and type the values.

    Missing optional arguments get their declared default.  Without a
    schema, every argument passes through as a string.

    Args:
        provided: Raw ``name -> value`` strings from the command line.
        args_def: The command's declared arguments, if any.
        plugin_name: Used in error messages.
        command_name: Used in error messages.

    Returns:
        Typed arguments ready for the execution context.

    Raises:
        ArgumentValidationError: With every problem found, plus usage.
    """
    if args_def is None:
        return dict(provided)

    typed: dict[str, Any] = {}
    errors: list[str] = []

    for name, arg in args_def.required.items():
        if name not in provided:
            errors.append(f"Missing required argument '--{name}'")
            continue
        try:
            typed[name] = coerce_value(provided[name], arg.arg_type)
        except ValueError as exc:
            errors.append(f"Invalid value for required argument '--{name}': {exc}")

    for name, arg in args_def.optional.items():
        raw = provided.get(name, arg.default_value)
        if raw is None:
            continue
        try:
            typed[name] = coerce_value(raw, arg.arg_type)
        except ValueError as exc:
            errors.append(f"Invalid value for optional argument '--{name}': {exc}")

    known = [*args_def.required, *args_def.optional]
    for name in provided:
        if name in known:
            continue
        message = f"Unknown argument '--{name}' for command '{plugin_name}:{command_name}'"
        suggestion = suggest_similar(name, known)
        if suggestion:
            message += f" (did you mean '--{suggestion}'?)"
        errors.append(message)

    if errors:
        body = "\n".join(f"  {e}" for e in errors)
        raise ArgumentValidationError(
            f"Argument validation failed for '{plugin_name}:{command_name}':\n{body}\n\n"
            f"{usage(args_def, plugin_name, command_name)}",
            errors=errors,
        )
    return typed
