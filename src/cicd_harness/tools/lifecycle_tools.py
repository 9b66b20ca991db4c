# Este archivo implementa las herramientas MCP del ciclo de vida: ejecutar el
# escenario completo del servidor y ejecutar un pipeline YAML.

"""
MCP tools for server test runs and pipelines.

Implements run_server_test and run_pipeline tools.
"""
import asyncio  # Ejecución del pipeline fuera del event loop
from pathlib import Path  # Manejo moderno de rutas de archivos
from typing import Dict, Optional  # Type hints para valores opcionales y diccionarios

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas

from ..config.settings import get_settings  # Singleton de configuración
from ..exceptions import ConfigurationError, PipelineError, ValidationError  # Excepciones personalizadas
from ..orchestrator import Orchestrator  # Orquestador del escenario
from ..utils.logging import get_logger  # Logger estructurado
from ..utils.pipeline_runner import run_pipeline_file  # Ejecutor de pipelines
from ..utils.validation import parse_command, validate_port, validate_readiness_marker  # Validación

logger = get_logger(__name__)
settings = get_settings()


def register_lifecycle_tools(mcp: FastMCP) -> None:
    """
    Register lifecycle MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def run_server_test(
        command: Optional[str] = None,
        port: Optional[int] = None,
        readiness_marker: Optional[str] = None,
        env: Optional[Dict[str, str]] = None
    ) -> dict:
        """
        Start a server, assert its health endpoint and shut it down.

        Waits for the port to be free, launches the command with retries,
        waits for the readiness marker and a healthy /health, asserts the
        health response, then always terminates the process tree and waits
        for the port to be released.

        Args:
            command: Start command (default: bundled server)
            port: Port the server listens on (default: from settings)
            readiness_marker: Text the server prints once bound
            env: Extra environment variables for the server

        Returns:
            Run report with success, exit_code, attempts, failed_stage,
            error_kind, error and per-stage results
        """
        try:
            overrides = {}
            if port is not None:
                overrides["port"] = validate_port(port)
            if readiness_marker is not None:
                overrides["readiness_marker"] = validate_readiness_marker(readiness_marker)
            run_settings = settings.model_copy(update=overrides)

            argv = parse_command(command) if command else run_settings.command()
        except (ValidationError, ConfigurationError) as e:
            logger.error("run_server_test_invalid_input", error=str(e), context=e.context)
            raise

        report = await Orchestrator(settings=run_settings, command=argv, env=env).run()
        return report.model_dump(mode="json")

    @mcp.tool()
    async def run_pipeline(path: Optional[str] = None) -> dict:
        """
        Run a YAML pipeline of shell steps in order.

        Stops at the first step that exits non-zero.

        Args:
            path: Pipeline file (default: pipeline.yaml)

        Returns:
            Dictionary containing:
                - path: Pipeline file that ran
                - steps: Per-step status and duration
                - message: Human-readable message
        """
        pipeline_path = Path(path) if path else settings.pipeline_file
        try:
            results = await asyncio.to_thread(run_pipeline_file, pipeline_path, None, True)
        except PipelineError as e:
            logger.error("run_pipeline_failed", path=str(pipeline_path), error=str(e))
            raise

        return {
            "path": str(pipeline_path),
            "steps": [r.model_dump(mode="json") for r in results],
            "message": f"All {len(results)} step(s) completed"
        }
