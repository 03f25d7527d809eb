"""Chat assistant backed by Amazon Bedrock."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .credentials import create_client
from .exceptions import ChatCompletionFailed, InvalidRequest
from .models import ChatMessage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a retail demand forecasting assistant. Help users prepare sales "
    "history, interpret forecasts and plan inventory. Keep answers concise and "
    "say so when a question needs data you do not have."
)


class ChatAssistant:
    def __init__(self, settings: Settings, bedrock_client: Any | None = None):
        self.settings = settings
        self._bedrock_client = bedrock_client

    @property
    def bedrock_client(self):
        """Lazy-loaded Bedrock runtime client."""
        if self._bedrock_client is None:
            self._bedrock_client = create_client(self.settings, "bedrock-runtime")
        return self._bedrock_client

    def generate_response(self, messages: Sequence[ChatMessage]) -> str:
        """Send the conversation to Bedrock and return the assistant's text."""
        if not messages:
            raise InvalidRequest("At least one message is required")

        model_id = self.settings.bedrock_model_id
        try:
            response = self.bedrock_client.converse(
                modelId=model_id,
                system=[{"text": SYSTEM_PROMPT}],
                messages=[
                    {"role": message.role, "content": [{"text": message.content}]}
                    for message in messages
                ],
                inferenceConfig={
                    "maxTokens": self.settings.chat_max_tokens,
                    "temperature": self.settings.chat_temperature,
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error generating chat response with %s: %s", model_id, e)
            raise ChatCompletionFailed(
                f"Failed to generate response: {e}", model_id=model_id, cause=e
            ) from e

        content = response.get("output", {}).get("message", {}).get("content", [])
        text = "".join(block.get("text", "") for block in content)
        if not text:
            raise ChatCompletionFailed("Model returned an empty response", model_id=model_id)
        return text
