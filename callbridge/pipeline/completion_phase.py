"""Completion phase — ask the chat model for the agent's next line."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from callbridge.constants import SYSTEM_PROMPT
from callbridge.errors import CompletionError
from callbridge.telemetry import call_span

logger = logging.getLogger(__name__)


def to_chat_messages(history: list[dict[str, str]], system_prompt: str = SYSTEM_PROMPT) -> list[BaseMessage]:
    """Map ``{"role", "content"}`` history entries onto LangChain messages."""
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]
    for entry in history:
        if entry["role"] == "assistant":
            messages.append(AIMessage(content=entry["content"]))
        else:
            messages.append(HumanMessage(content=entry["content"]))
    return messages


def _response_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Anthropic content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content or "").strip()


async def get_response_completion(history: list[dict[str, str]], chat_model: Any) -> list[dict[str, str]]:
    """Return *history* extended with the model's assistant reply.

    *history* is not mutated. Raises ``CompletionError`` if the model call
    fails or comes back empty.
    """
    with call_span("completion", history_len=len(history)):
        try:
            response = await chat_model.ainvoke(to_chat_messages(history))
        except Exception as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc

        text = _response_text(response)
        if not text:
            raise CompletionError("Completion returned no content")

        logger.info("[Completion] Reply: %.120s", text)
        return [*history, {"role": "assistant", "content": text}]
