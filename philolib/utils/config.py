"""
Configuration management for AWS services and simulation settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class SourceLibraryConfig:
    """Configuration for the source library corpus API."""
    base_url: str
    timeout: float
    max_context_chars: int


@dataclass
class MemoryConfig:
    """Configuration for memory expiration horizons and the display feed."""
    event_expiration_days: int = 1
    chat_expiration_days: int = 7
    thought_expiration_days: int = 30
    feed_max_entries: int = 50


@dataclass
class RetrievalConfig:
    """Weights and limits for recency/relevance/importance retrieval."""
    recency_weight: float = 0.5
    relevance_weight: float = 3.0
    importance_weight: float = 2.0
    recency_decay: float = 0.99
    max_results: int = 30
    relationship_max_results: int = 10


@dataclass
class ReflectionConfig:
    """Configuration for the reflection cycle."""
    importance_trigger_max: int = 150
    max_focal_points: int = 3
    max_insights: int = 5
    recent_insights: int = 3


@dataclass
class DialogueConfig:
    """Configuration for philosopher dialogues."""
    max_turns: int = 6
    duration_minutes: int = 10
    memory_context: int = 10
    source_context_chars: int = 1000
    citation_count: int = 2
    citation_chars: int = 200


@dataclass
class SimulationConfig:
    """Configuration for the slow (AI-backed) simulation cadence."""
    thought_interval_seconds: float = 8.0
    passages_per_thought: int = 2


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    source_library: SourceLibraryConfig
    memory: MemoryConfig
    retrieval: RetrievalConfig
    reflection: ReflectionConfig
    dialogue: DialogueConfig
    simulation: SimulationConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1024')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Corpus configuration
    source_library_config = SourceLibraryConfig(base_url=os.getenv('SOURCE_LIBRARY_API', 'https://sourcelibrary.org/api'),
                                                timeout=float(os.getenv('SOURCE_LIBRARY_TIMEOUT', '10.0')),
                                                max_context_chars=int(os.getenv('SOURCE_LIBRARY_MAX_CONTEXT_CHARS', '2000')))

    memory_config = MemoryConfig(event_expiration_days=int(os.getenv('MEMORY_EVENT_EXPIRATION_DAYS', '1')),
                                 chat_expiration_days=int(os.getenv('MEMORY_CHAT_EXPIRATION_DAYS', '7')),
                                 thought_expiration_days=int(os.getenv('MEMORY_THOUGHT_EXPIRATION_DAYS', '30')),
                                 feed_max_entries=int(os.getenv('MEMORY_FEED_MAX_ENTRIES', '50')))

    retrieval_config = RetrievalConfig(recency_weight=float(os.getenv('RETRIEVAL_RECENCY_WEIGHT', '0.5')),
                                       relevance_weight=float(os.getenv('RETRIEVAL_RELEVANCE_WEIGHT', '3.0')),
                                       importance_weight=float(os.getenv('RETRIEVAL_IMPORTANCE_WEIGHT', '2.0')),
                                       recency_decay=float(os.getenv('RETRIEVAL_RECENCY_DECAY', '0.99')),
                                       max_results=int(os.getenv('RETRIEVAL_MAX_RESULTS', '30')),
                                       relationship_max_results=int(os.getenv('RETRIEVAL_RELATIONSHIP_MAX_RESULTS', '10')))

    reflection_config = ReflectionConfig(importance_trigger_max=int(os.getenv('REFLECTION_IMPORTANCE_TRIGGER_MAX', '150')),
                                         max_focal_points=int(os.getenv('REFLECTION_MAX_FOCAL_POINTS', '3')),
                                         max_insights=int(os.getenv('REFLECTION_MAX_INSIGHTS', '5')),
                                         recent_insights=int(os.getenv('REFLECTION_RECENT_INSIGHTS', '3')))

    dialogue_config = DialogueConfig(max_turns=int(os.getenv('DIALOGUE_MAX_TURNS', '6')),
                                     duration_minutes=int(os.getenv('DIALOGUE_DURATION_MINUTES', '10')),
                                     memory_context=int(os.getenv('DIALOGUE_MEMORY_CONTEXT', '10')),
                                     source_context_chars=int(os.getenv('DIALOGUE_SOURCE_CONTEXT_CHARS', '1000')),
                                     citation_count=int(os.getenv('DIALOGUE_CITATION_COUNT', '2')),
                                     citation_chars=int(os.getenv('DIALOGUE_CITATION_CHARS', '200')))

    simulation_config = SimulationConfig(thought_interval_seconds=float(os.getenv('SIMULATION_THOUGHT_INTERVAL_SECONDS', '8.0')),
                                         passages_per_thought=int(os.getenv('SIMULATION_PASSAGES_PER_THOUGHT', '2')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     source_library=source_library_config,
                     memory=memory_config,
                     retrieval=retrieval_config,
                     reflection=reflection_config,
                     dialogue=dialogue_config,
                     simulation=simulation_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
