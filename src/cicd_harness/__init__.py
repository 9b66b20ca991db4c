# Este archivo marca el paquete cicd_harness y expone la versión del proyecto.

"""
CI/CD server harness - start a server, check its health endpoint, tear it down.

Also bundles the target health/webhook server, a YAML pipeline runner and an
MCP server exposing the same operations as tools.
"""

__version__ = "0.1.0"
__description__ = "Server-lifecycle test harness for CI/CD pipelines"

__all__ = ["__version__", "__description__"]
