# Este es el servidor MCP que expone el arnés como herramientas: registra las
# 4 herramientas y ejecuta el servidor FastMCP.

"""
CI/CD harness MCP server.

Exposes the health, port, server-test and pipeline operations as MCP tools.
"""
from mcp.server.fastmcp import FastMCP  # Framework FastMCP para crear servidor MCP

from .config.settings import get_settings  # Singleton de configuración
from .utils.logging import setup_logging, get_logger  # Sistema de logging estructurado

from .tools.health_tools import register_health_tools  # Herramientas de salud (healthcheck, wait_for_port_free)
from .tools.lifecycle_tools import register_lifecycle_tools  # Herramientas de ciclo de vida (run_server_test, run_pipeline)

TOOL_NAMES = ["healthcheck", "wait_for_port_free", "run_server_test", "run_pipeline"]

settings = get_settings()
logger = get_logger(__name__)

# Initialize FastMCP server
mcp = FastMCP(
    name=settings.server_name,
    json_response=True  # Return JSON responses for better parsing
)

register_health_tools(mcp)
register_lifecycle_tools(mcp)


def main():
    """
    Run the MCP server with the configured transport.

    Logging goes to stderr so it never mixes with stdio MCP traffic.
    """
    settings.ensure_directories()
    setup_logging(
        level=settings.log_level,
        json_logs=settings.log_json,
        log_dir=settings.log_dir
    )

    logger.info(
        "mcp_server_ready",
        server_name=settings.server_name,
        transport=settings.transport,
        tools=TOOL_NAMES
    )

    try:
        mcp.run(transport=settings.transport)
    except KeyboardInterrupt:
        logger.info("mcp_server_shutdown", reason="keyboard_interrupt")
    except Exception as e:
        logger.error("mcp_server_error", error=str(e))
        raise


if __name__ == "__main__":
    main()
