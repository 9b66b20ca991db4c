# Este archivo implementa las herramientas MCP de verificación: healthcheck con
# retry exponencial y espera de puerto libre.

"""
MCP tools for service health and port checks.

Implements healthcheck and wait_for_port_free tools.
"""
from typing import Optional  # Type hints para valores opcionales

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas

from ..config.settings import get_settings  # Singleton de configuración
from ..exceptions import HealthCheckFailure, PortStillBound  # Excepciones personalizadas
from ..utils.health_utils import poll_health  # Sondeo con backoff
from ..utils.logging import get_logger  # Logger estructurado
from ..utils.port_utils import wait_for_port_free as wait_for_port_free_util  # Espera de puerto
from ..utils.validation import validate_port  # Validación de inputs

logger = get_logger(__name__)
settings = get_settings()


def register_health_tools(mcp: FastMCP) -> None:
    """
    Register health check MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def healthcheck(
        url: str,
        timeout: Optional[float] = None,
        interval: float = 2.0,
        backoff: float = 1.5,
        expected_status: int = 200
    ) -> dict:
        """
        Validate service availability with exponential backoff retry.

        Polls the specified URL until it returns the expected HTTP status code
        or the timeout is reached.

        Args:
            url: URL to check (e.g., http://127.0.0.1:4000/health)
            timeout: Maximum seconds to wait (default: 30)
            interval: Initial retry interval in seconds (default: 2.0)
            backoff: Backoff multiplier for retry interval (default: 1.5)
            expected_status: Expected HTTP status code (default: 200)

        Returns:
            Dictionary containing:
                - healthy: Boolean indicating if service is healthy
                - url: URL that was checked
                - response_code: HTTP status code
                - attempts: Number of attempts made
                - elapsed_seconds: Total time elapsed
                - message: Human-readable status message
        """
        try:
            return await poll_health(
                url,
                timeout=timeout if timeout is not None else 30.0,
                interval=interval,
                backoff=backoff,
                expected_status=expected_status
            )
        except HealthCheckFailure as e:
            logger.error("healthcheck_tool_failed", url=url, error=str(e), context=e.context)
            raise

    @mcp.tool()
    async def wait_for_port_free(
        port: int,
        host: str = "127.0.0.1",
        timeout: Optional[float] = None
    ) -> dict:
        """
        Wait until nothing accepts TCP connections on a port.

        Use it before starting a server on that port, or after stopping one,
        to confirm the socket was released.

        Args:
            port: Port to watch
            host: Host to connect to (default: 127.0.0.1)
            timeout: Maximum seconds to wait (default: from settings)

        Returns:
            Dictionary containing:
                - port: Port that was checked
                - free: True once the port is free
                - elapsed_seconds: Time waited
        """
        validated_port = validate_port(port)
        try:
            elapsed = await wait_for_port_free_util(
                validated_port,
                host=host,
                timeout=timeout if timeout is not None else settings.port_wait_timeout,
                interval=settings.port_poll_interval
            )
        except PortStillBound as e:
            logger.error("wait_for_port_tool_failed", port=validated_port, error=str(e))
            raise

        return {
            "port": validated_port,
            "host": host,
            "free": True,
            "elapsed_seconds": elapsed
        }
