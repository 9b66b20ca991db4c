"""
MCP Protocol tests — verifies the server starts correctly and exposes all 4 tools.

Uses the official MCP Python client SDK (stdio_client + ClientSession) to connect
to the server as a subprocess and issue real MCP protocol calls.

Run with:
    pytest tests/test_mcp_server.py -v -s
"""
import json
import sys

import pytest

EXPECTED_TOOLS = {
    "healthcheck",
    "wait_for_port_free",
    "run_server_test",
    "run_pipeline",
}


def server_params():
    from mcp import StdioServerParameters

    return StdioServerParameters(
        command=sys.executable,
        args=["-m", "cicd_harness", "mcp"],
        env=None,  # inherit parent environment (includes venv and .env location)
    )


@pytest.mark.asyncio
async def test_mcp_server_starts_and_registers_all_tools():
    """
    Start the MCP server as a subprocess via stdio transport and verify:
    1. Server initializes without error.
    2. All 4 tools are registered and listed.
    """
    from mcp import ClientSession
    from mcp.client.stdio import stdio_client

    async with stdio_client(server_params()) as (read, write):
        async with ClientSession(read, write) as session:
            # ── Initialize ─────────────────────────────────────────────────
            init_result = await session.initialize()
            assert init_result is not None, "Server did not return initialize result"

            # ── List tools ─────────────────────────────────────────────────
            tools_result = await session.list_tools()
            registered_names = {tool.name for tool in tools_result.tools}

            missing = EXPECTED_TOOLS - registered_names
            assert not missing, (
                f"Missing tools in MCP server: {missing}\n"
                f"Registered tools: {registered_names}"
            )
            assert len(registered_names) == 4, (
                f"Expected exactly 4 tools, got {len(registered_names)}: {registered_names}"
            )


@pytest.mark.asyncio
async def test_mcp_tools_have_descriptions_and_schemas():
    """Verify each tool has a real description and an inputSchema."""
    from mcp import ClientSession
    from mcp.client.stdio import stdio_client

    async with stdio_client(server_params()) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()
            tools_result = await session.list_tools()

            for tool in tools_result.tools:
                assert tool.description and len(tool.description) > 10, (
                    f"Tool '{tool.name}' description missing or too short"
                )
                assert tool.inputSchema is not None, (
                    f"Tool '{tool.name}' has no inputSchema"
                )


@pytest.mark.asyncio
async def test_mcp_wait_for_port_free_via_protocol(free_port):
    """Call wait_for_port_free through the MCP protocol on an unused port."""
    from mcp import ClientSession
    from mcp.client.stdio import stdio_client

    async with stdio_client(server_params()) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()

            result = await session.call_tool(
                "wait_for_port_free",
                arguments={"port": free_port, "timeout": 2},
            )

            assert not result.isError, f"Tool returned error: {result.content}"
            data = json.loads(result.content[0].text)
            assert data["free"] is True
            assert data["port"] == free_port


@pytest.mark.asyncio
async def test_mcp_run_pipeline_via_protocol(tmp_path):
    """Run a one-step pipeline through the MCP protocol."""
    from mcp import ClientSession
    from mcp.client.stdio import stdio_client

    pipeline = tmp_path / "pipeline.yaml"
    pipeline.write_text("steps:\n  - name: Echo\n    command: echo hello\n")

    async with stdio_client(server_params()) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()

            result = await session.call_tool("run_pipeline", arguments={"path": str(pipeline)})

            assert not result.isError, f"Tool returned error: {result.content}"
            data = json.loads(result.content[0].text)
            assert [step["name"] for step in data["steps"]] == ["Echo"]
            assert data["steps"][0]["status"] == "success"
