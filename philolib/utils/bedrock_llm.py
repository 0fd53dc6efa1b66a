"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.

This is the language-model gateway used by reflection and dialogue: a single
``complete(system_prompt, user_content)`` call returning plain text.
"""

import asyncio
import random
import time
from typing import Any, Dict, Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def read_stream(stream: Optional[Iterable[Dict[str, Any]]]) -> str:
    """Join the text deltas of a converse_stream response."""
    text = ''
    for event in stream or []:
        if 'contentBlockDelta' in event:
            text += event['contentBlockDelta']['delta'].get('text', '')
        elif 'metadata' in event:
            usage = event['metadata'].get('usage', {})
            latency = event['metadata'].get('metrics', {}).get('latencyMs')
            logger.debug(f'Bedrock LLM usage: {usage}, latency {latency} ms')
    return text


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with model, region and retry settings
        """
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=60,
                read_timeout=300,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          system_prompt: str,
                          user_content: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None) -> str:
        """
        Run a single-turn completion with retry logic.

        Args:
            system_prompt: Instructions framing the request
            user_content: The prompt body, sent as the only user message
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)

        Returns:
            The generated text, stripped

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        inference_config = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
        }
        messages = [{'role': 'user', 'content': [{'text': user_content}]}]

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')
                response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                                messages=messages,
                                                                system=[{'text': system_prompt}],
                                                                inferenceConfig=inference_config)
                text = read_stream(response.get('stream'))
                logger.debug(f'Bedrock LLM response generated (length: {len(text)})')
                return text.strip()

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    async def complete(self, system_prompt: str, user_content: str) -> str:
        """
        Language-model gateway call.

        The blocking boto3 stream is consumed in a worker thread so the
        simulation's event loop keeps running while the model is generating.

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        return await asyncio.to_thread(self.generate_response, system_prompt, user_content)

    def health_check(self) -> bool:
        try:
            response = self.generate_response("You are a helpful assistant. Respond with just 'OK'.",
                                              'Hi',
                                              max_tokens=10,
                                              temperature=0.0)
            return len(response) > 0
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
