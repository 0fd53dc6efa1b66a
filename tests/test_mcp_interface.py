"""Tests for the MCP interface wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from philolib import mcp_interface


class TestMCPInterface:

    def test_server_name(self):
        assert mcp_interface.mcp.name == 'Philosophers Library'

    @pytest.mark.asyncio
    async def test_simulation_built_once(self):
        simulation = MagicMock(controllers={})
        build = AsyncMock(return_value=simulation)

        with patch.object(mcp_interface, '_simulation', None), \
                patch.object(mcp_interface, 'build_simulation', build), \
                patch.object(mcp_interface, 'BedrockLLM'), \
                patch.object(mcp_interface, 'BedrockEmbed'), \
                patch.object(mcp_interface, 'SourceLibraryClient'):
            assert await mcp_interface.get_simulation() is simulation
            assert await mcp_interface.get_simulation() is simulation

        build.assert_awaited_once()
