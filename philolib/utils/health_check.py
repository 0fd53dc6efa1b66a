"""
Health check utilities for the external services the simulation depends on.
"""

from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .source_library import SourceLibraryClient

logger = get_logger(__name__)


def check_health(health_status: Optional[Dict[str, Any]] = None) -> bool:
    """Check the health of all external services.

    Args:
        health_status: Result of get_health_status() (collected if None)

    Returns:
        True if all services are healthy, False otherwise
    """
    if health_status is None:
        health_status = get_health_status()
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All external services are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy services: {", ".join(unhealthy)}')

    return all_healthy


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of each service.

    Returns:
        Dictionary with health status of each service
    """
    health_status = {}

    try:
        llm = BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    try:
        embed = BedrockEmbed(config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    try:
        library = SourceLibraryClient(config.source_library)
        health_status['source_library'] = {
            'healthy': library.health_check(),
            'service': 'Source Library',
            'endpoint': config.source_library.base_url
        }
    except Exception as e:
        health_status['source_library'] = {'healthy': False, 'service': 'Source Library', 'error': str(e)}

    return health_status


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'Philosophers Library',
        'version': '0.1.0',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'source_library_api': config.source_library.base_url,
            'importance_trigger_max': config.reflection.importance_trigger_max,
            'max_conversation_turns': config.dialogue.max_turns,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status()
    }
