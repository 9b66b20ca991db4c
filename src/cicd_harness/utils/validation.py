"""
Input validation and sanitization utilities.

Validates the command, endpoint and environment inputs accepted by the CLI
and the MCP tools before anything is spawned.
"""
import re  # Expresiones regulares para validación de patrones
import shlex  # Separación de líneas de comando estilo shell
from typing import Dict, List, Sequence  # Type hints para colecciones

from ..exceptions import ValidationError  # Excepción personalizada para errores de validación
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


def validate_port(port: int, min_port: int = 1, max_port: int = 65535) -> int:
    """
    Validate port number.

    Args:
        port: Port number to validate
        min_port: Minimum allowed port (default: 1)
        max_port: Maximum allowed port (default: 65535)

    Returns:
        Validated port number

    Raises:
        ValidationError: If port is out of valid range
    """
    if not isinstance(port, int) or isinstance(port, bool):
        raise ValidationError(
            "Port must be an integer",
            context={"port": port, "type": type(port).__name__}
        )

    if not (min_port <= port <= max_port):
        raise ValidationError(
            f"Port must be between {min_port} and {max_port}",
            context={"port": port, "min": min_port, "max": max_port}
        )

    return port


def validate_health_path(path: str) -> str:
    """
    Validate the health endpoint path.

    Raises:
        ValidationError: If path is not absolute or contains whitespace
    """
    if not path.startswith("/"):
        raise ValidationError(
            f"Health path must start with '/': {path}",
            context={"path": path}
        )

    if re.search(r"\s", path):
        raise ValidationError(
            "Health path cannot contain whitespace",
            context={"path": path}
        )

    return path


def parse_command(command: str | Sequence[str]) -> List[str]:
    """
    Turn a start command into an argv list.

    Strings are split with shell rules (no shell is involved when spawning).

    Args:
        command: Command line string or pre-split argv

    Returns:
        Non-empty argv list

    Raises:
        ValidationError: If the command is empty or cannot be parsed
    """
    if isinstance(command, str):
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise ValidationError(
                f"Cannot parse command: {e}",
                context={"command": command}
            )
    else:
        argv = [str(part) for part in command]

    if not argv or not argv[0]:
        raise ValidationError(
            "Start command cannot be empty",
            context={"command": command}
        )

    return argv


def validate_readiness_marker(marker: str) -> str:
    """Readiness marker must be a non-empty, single-line string."""
    if not marker or not marker.strip():
        raise ValidationError("Readiness marker cannot be empty", context={})

    if "\n" in marker or "\r" in marker:
        raise ValidationError(
            "Readiness marker must be a single line",
            context={"marker": marker}
        )

    return marker


def parse_env_assignments(assignments: Sequence[str]) -> Dict[str, str]:
    """
    Parse KEY=VALUE pairs passed on the command line.

    Args:
        assignments: Strings in KEY=VALUE form

    Returns:
        Mapping of environment variable names to values

    Raises:
        ValidationError: If a pair is malformed or the name is invalid
    """
    env = {}

    for item in assignments:
        if "=" not in item:
            raise ValidationError(
                f"Expected KEY=VALUE, got: {item}",
                context={"item": item}
            )

        key, value = item.split("=", 1)
        if not re.match(r'^[A-Za-z_][A-Za-z0-9_]*$', key):
            raise ValidationError(
                f"Invalid environment variable name: {key}",
                context={"key": key}
            )

        env[key] = value

    logger.debug("env_overrides_parsed", keys=sorted(env))
    return env
