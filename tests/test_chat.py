from unittest.mock import MagicMock

import pytest

from conftest import client_error
from retail_forecaster.chat import SYSTEM_PROMPT, ChatAssistant
from retail_forecaster.exceptions import ChatCompletionFailed, InvalidRequest
from retail_forecaster.models import ChatMessage


def _converse_response(*texts: str) -> dict:
    return {
        "output": {"message": {"role": "assistant", "content": [{"text": t} for t in texts]}},
        "stopReason": "end_turn",
    }


def test_generate_response_forwards_conversation(settings):
    bedrock = MagicMock()
    bedrock.converse.return_value = _converse_response("Stock up ", "before December.")
    assistant = ChatAssistant(settings, bedrock_client=bedrock)

    reply = assistant.generate_response(
        [
            ChatMessage(role="user", content="When should I reorder?"),
            ChatMessage(role="assistant", content="Which product?"),
            ChatMessage(role="user", content="Winter coats"),
        ]
    )

    assert reply == "Stock up before December."
    kwargs = bedrock.converse.call_args.kwargs
    assert kwargs["modelId"] == settings.bedrock_model_id
    assert kwargs["system"] == [{"text": SYSTEM_PROMPT}]
    assert kwargs["messages"][2] == {"role": "user", "content": [{"text": "Winter coats"}]}
    assert kwargs["inferenceConfig"] == {"maxTokens": 1024, "temperature": 0.5}


def test_empty_conversation_is_rejected(settings):
    bedrock = MagicMock()

    with pytest.raises(InvalidRequest):
        ChatAssistant(settings, bedrock_client=bedrock).generate_response([])

    bedrock.converse.assert_not_called()


def test_bedrock_error_raises_chat_completion_failed(settings):
    bedrock = MagicMock()
    bedrock.converse.side_effect = client_error("ThrottlingException", "slow down", "Converse")

    with pytest.raises(ChatCompletionFailed) as exc_info:
        ChatAssistant(settings, bedrock_client=bedrock).generate_response(
            [ChatMessage(role="user", content="hi")]
        )

    assert exc_info.value.retryable is True


def test_empty_model_output_raises(settings):
    bedrock = MagicMock()
    bedrock.converse.return_value = _converse_response()

    with pytest.raises(ChatCompletionFailed):
        ChatAssistant(settings, bedrock_client=bedrock).generate_response(
            [ChatMessage(role="user", content="hi")]
        )
