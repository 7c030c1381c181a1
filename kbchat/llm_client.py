"""Ollama HTTP client with timeouts, retry and streaming support."""
import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from kbchat import config

logger = structlog.get_logger()


def _is_retryable(error: httpx.HTTPError) -> bool:
    """Transport failures and 5xx responses are worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


class OllamaClient:
    """Async client for interacting with the Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        connect_timeout: float = None,
        max_retries: int = None,
        retry_delay: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Read/write timeout in seconds for every request
            connect_timeout: Connection timeout in seconds
            max_retries: Retries for non-streaming calls on transient errors
            retry_delay: Initial backoff delay in seconds (doubles per retry)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(
            timeout if timeout is not None else config.OLLAMA_TIMEOUT,
            connect=connect_timeout if connect_timeout is not None else config.OLLAMA_CONNECT_TIMEOUT,
        )
        self.max_retries = max_retries if max_retries is not None else config.OLLAMA_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else config.OLLAMA_RETRY_DELAY
        self._transport = transport

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload with bounded retry and exponential backoff.

        Raises:
            httpx.HTTPError: When the last attempt fails or the error is not retryable
        """
        delay = self.retry_delay
        attempt = 0

        while True:
            attempt += 1
            try:
                async with self._client() as client:
                    response = await client.post(path, json=payload)
                    response.raise_for_status()
                    return response.json()

            except httpx.HTTPError as e:
                if attempt > self.max_retries or not _is_retryable(e):
                    raise

                logger.warning(
                    "ollama_request_retry",
                    path=path,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(delay)
                delay *= 2

    async def chat_stream(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream a chat completion from Ollama.

        Yields each NDJSON object Ollama sends, e.g.
        ``{"message": {"role": "assistant", "content": "Hel"}, "done": false}``
        and finally one object with ``"done": true``.

        Closing the iterator closes the underlying HTTP response.

        Raises:
            httpx.HTTPError: On connection or HTTP status errors
            ValueError: If a line is not valid JSON
        """
        model = model or config.CHAT_MODEL

        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        logger.info(
            "ollama_chat_stream_request",
            model=model,
            message_count=len(messages),
        )

        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    response.raise_for_status()

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        yield json.loads(line)

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_chat_stream_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def embed(
        self,
        inputs: List[str],
        model: str = None,
    ) -> List[List[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            inputs: Texts to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            One embedding per input, in input order

        Raises:
            httpx.HTTPError: On API errors (after retries)
        """
        model = model or config.EMBEDDING_MODEL

        if not inputs:
            return []

        logger.debug(
            "ollama_embed_request",
            model=model,
            batch_size=len(inputs),
        )

        try:
            data = await self._post_json("/api/embed", {"model": model, "input": inputs})
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), error_type=type(e).__name__)
            raise

        embeddings = data.get("embeddings", [])

        logger.debug(
            "ollama_embed_response",
            model=model,
            count=len(embeddings),
            dimension=len(embeddings[0]) if embeddings else 0,
        )

        return embeddings

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=httpx.Timeout(5.0)) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


def model_installed(model: str, installed: List[str]) -> bool:
    """Match a model name against Ollama tags ("name" means "name:latest")."""
    if ":" not in model:
        model = f"{model}:latest"
    return model in installed
