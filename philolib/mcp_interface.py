"""
MCP Interface Layer using fastmcp to drive the philosopher simulation.
"""
from typing import Any, Dict, List, Optional, Tuple

from fastmcp import FastMCP

from .services.simulation import Simulation, build_simulation
from .utils.bedrock_embed import BedrockEmbed
from .utils.bedrock_llm import BedrockLLM
from .utils.config import config
from .utils.health_check import check_health, get_health_status, get_system_info
from .utils.logging_config import get_logger
from .utils.source_library import SourceLibraryClient

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Philosophers Library')

_simulation: Optional[Simulation] = None


async def get_simulation() -> Simulation:
    """Build the shared simulation on first use."""
    global _simulation
    if _simulation is None:
        _simulation = await build_simulation(BedrockLLM(config.bedrock_llm), BedrockEmbed(config.bedrock_embed),
                                             SourceLibraryClient(config.source_library), config)
        logger.info(f'Simulation ready with {len(_simulation.controllers)} agents')
    return _simulation


@mcp.tool()
async def list_agents() -> List[Dict[str, Any]]:
    """List the philosopher agents and what they are doing.

    Returns:
        List of dicts with id, name, archetype, conversation partner and memory count
    """
    simulation = await get_simulation()
    return [{
        'id': c.id,
        'name': c.name,
        'archetype': c.identity.archetype_label,
        'chatting_with': c.scratch.chatting_with,
        'memories': len(c.store),
    } for c in simulation.controllers.values()]


@mcp.tool()
async def observe(agent_id: str, description: str) -> Tuple[str, int]:
    """Record an observation in an agent's memory.

    Args:
        agent_id: Agent ID, e.g. 'ficino'
        description: What the agent observed

    Returns:
        Tuple of (node_id, poignancy)
    """
    if not description or not description.strip():
        raise ValueError('Description is required')

    try:
        simulation = await get_simulation()
        node = await simulation.controller(agent_id).observe(description.strip())
        return node.id, node.poignancy
    except Exception as e:
        logger.error(f'Unexpected error in MCP observe: {e}')
        raise Exception(f'Observation failed: {e}')


@mcp.tool()
async def cite_source(agent_id: str, source_id: str, passage: str, interpretation: str) -> str:
    """Record a corpus citation and the agent's interpretation of it.

    Args:
        agent_id: Agent ID
        source_id: Corpus book ID
        passage: Quoted text
        interpretation: The agent's reading of the passage

    Returns:
        ID of the new source memory
    """
    try:
        simulation = await get_simulation()
        node = await simulation.controller(agent_id).cite_source(source_id, passage, interpretation)
        return node.id
    except Exception as e:
        logger.error(f'Unexpected error in MCP cite_source: {e}')
        raise Exception(f'Citation failed: {e}')


@mcp.tool()
async def retrieve_memories(agent_id: str, topic: str, top_k: int = 10) -> List[Tuple[str, str, float]]:
    """Retrieve an agent's memories most relevant to a topic.

    Args:
        agent_id: Agent ID
        topic: Natural language topic or question
        top_k: Maximum number of results to return (default: 10)

    Returns:
        List of tuples (memory_id, description, score)
    """
    if not topic or not topic.strip():
        return []

    try:
        simulation = await get_simulation()
        scored = await simulation.controller(agent_id).retrieve_for_topic(topic, top_k)
        result = [(s.node.id, s.node.description, round(s.total_score, 4)) for s in scored]
        logger.debug(f'MCP retrieve returned {len(result)} memories for {agent_id}')
        return result
    except Exception as e:
        logger.error(f'Unexpected error in MCP retrieve: {e}')
        raise Exception(f'Memory retrieval failed: {e}')


@mcp.tool()
async def reflect(agent_id: str) -> List[str]:
    """Run a reflection cycle if the agent's importance budget is spent.

    Returns:
        Descriptions of new thoughts (empty if reflection was not due)
    """
    try:
        simulation = await get_simulation()
        thoughts = await simulation.controller(agent_id).maybe_reflect()
        return [node.description for node in thoughts]
    except Exception as e:
        logger.error(f'Unexpected error in MCP reflect: {e}')
        raise Exception(f'Reflection failed: {e}')


@mcp.tool()
async def converse(initiator_id: str, target_id: str, topic: Optional[str] = None, style: str = 'free') -> Dict[str, Any]:
    """Propose a dialogue between two agents and run it to completion.

    Args:
        initiator_id: Agent who opens the dialogue
        target_id: Agent being addressed
        topic: Optional topic (generated if omitted)
        style: socratic, disputatio, commentary, epistle or free

    Returns:
        Dict with the transcript and summary; started is False when the initiator declines
    """
    try:
        simulation = await get_simulation()
        dialogue = await simulation.propose_dialogue(initiator_id, target_id, style, topic)
        if dialogue is None:
            return {'started': False}

        finished = await simulation.run_dialogue(dialogue.id) or dialogue
        return {
            'started': True,
            'topic': finished.topic,
            'transcript': [(t.speaker_name, t.utterance, t.rhetoric_move) for t in finished.turns],
            'key_insights': finished.key_insights,
            'unresolved_questions': finished.unresolved_questions,
            'sources_discussed': finished.sources_discussed,
        }
    except Exception as e:
        logger.error(f'Unexpected error in MCP converse: {e}')
        raise Exception(f'Dialogue failed: {e}')


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of the language model, embedding and corpus services."""
    services = get_health_status()
    return {'healthy': check_health(services), 'services': services}


@mcp.tool()
def system_info() -> Dict[str, Any]:
    """Report the configured models, corpus endpoint and simulation limits."""
    return get_system_info()


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
