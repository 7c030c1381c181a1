"""Streaming answer generation with the Ollama chat model."""
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Union

import httpx
import structlog

from kbchat import config
from kbchat.errors import GenerationError
from kbchat.llm_client import OllamaClient

logger = structlog.get_logger()


SYSTEM_PROMPT = """You are a helpful AI assistant. Be concise, accurate and friendly."""

CONTEXT_INSTRUCTIONS = """
KNOWLEDGE BASE CONTEXT:
{context}

INSTRUCTIONS:
- Answer based on the knowledge base context when it is relevant
- If the context does not cover the question, answer from your own knowledge and say so
- Do not invent details that are not in the context
"""

NO_CONTEXT_INSTRUCTIONS = """
INSTRUCTIONS:
- No knowledge base context is available for this question
- Answer from your own knowledge and be clear about uncertainty
"""


@dataclass(frozen=True)
class Token:
    """A piece of generated text."""

    text: str


@dataclass(frozen=True)
class Done:
    """The model reported that generation is complete."""


StreamEvent = Union[Token, Done]


class Generator:
    """Produces a token stream for a query and its retrieved context."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: str = None,
        temperature: Optional[float] = None,
    ):
        self.client = client or OllamaClient()
        self.model = model or config.CHAT_MODEL
        self.temperature = temperature if temperature is not None else config.TEMPERATURE

    @staticmethod
    def build_messages(query: str, context: str = "") -> List[Dict[str, str]]:
        """Build the system/user message pair sent to the model.

        The user message carries the query verbatim.
        """
        if context:
            system_content = SYSTEM_PROMPT + CONTEXT_INSTRUCTIONS.format(context=context)
        else:
            system_content = SYSTEM_PROMPT + NO_CONTEXT_INSTRUCTIONS

        return [
            {"role": "system", "content": system_content},
            {"role": "user", "content": query},
        ]

    async def generate_stream(self, query: str, context: str = "") -> AsyncIterator[StreamEvent]:
        """Stream the answer as Token events followed by a single Done.

        The iterator is single-use. If it ends without a Done event the
        answer may be incomplete.

        Raises:
            GenerationError: If the model service fails before or during streaming
        """
        messages = self.build_messages(query, context)
        token_count = 0

        stream = self.client.chat_stream(
            messages,
            model=self.model,
            temperature=self.temperature,
        )

        try:
            async for chunk in stream:
                if chunk.get("error"):
                    raise GenerationError(f"Model error: {chunk['error']}")

                content = (chunk.get("message") or {}).get("content", "")
                if content:
                    token_count += 1
                    yield Token(text=content)

                if chunk.get("done"):
                    logger.info(
                        "generation_completed",
                        model=self.model,
                        token_count=token_count,
                        context_length=len(context),
                    )
                    yield Done()
                    return

        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "generation_failed",
                model=self.model,
                token_count=token_count,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GenerationError(f"Generation failed: {e}") from e

        finally:
            await stream.aclose()

        logger.warning("generation_stream_ended_early", model=self.model, token_count=token_count)
