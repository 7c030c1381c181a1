"""Main Quart application for the knowledge base chat backend."""
import json
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from quart import Quart, Response, jsonify, request
from quart_cors import cors

from kbchat import config
from kbchat.errors import IngestionError
from kbchat.generator import Done, Generator, StreamEvent, Token
from kbchat.llm_client import OllamaClient, model_installed
from kbchat.log import configure_logging
from kbchat.middleware import RateLimiter, register_api_guards, register_security_headers
from kbchat.rag.retriever import Retriever

configure_logging()

logger = structlog.get_logger()


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""

    message: str = Field(min_length=1, max_length=config.MAX_MESSAGE_LENGTH)

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, value):
        return value.strip() if isinstance(value, str) else value


def _validation_message(error: ValidationError) -> str:
    """Turn the first pydantic error into a short client-facing message."""
    first = error.errors()[0]
    error_type = first.get("type")

    if error_type in ("missing", "string_too_short"):
        return "Message is required"
    if error_type == "string_too_long":
        return f"Message too long (max {config.MAX_MESSAGE_LENGTH} characters)"
    if error_type == "model_type":
        return "Request body must be a JSON object"
    return first.get("msg", "Invalid request")


def _sse(payload: dict) -> bytes:
    """Encode one server-sent event record."""
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n".encode("utf-8")


async def _first_event(stream: AsyncIterator[StreamEvent]) -> Optional[StreamEvent]:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


async def _event_stream(
    first_event: Optional[StreamEvent],
    stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[bytes]:
    """Write generator events as SSE records.

    Emits one record per token, then ``done``. Errors after the first byte
    can only be reported in-band. A stream without a Done event is reported
    as an error, never as ``done``.
    """
    completed = False
    token_count = 0

    try:
        event = first_event
        while event is not None:
            if isinstance(event, Done):
                completed = True
                break

            if isinstance(event, Token):
                token_count += 1
                yield _sse({"token": event.text})

            event = await _first_event(stream)

        if completed:
            yield _sse({"done": True})
        else:
            logger.warning("chat_stream_incomplete", token_count=token_count)
            yield _sse({"error": "Response ended before completion"})

    except Exception as e:
        logger.error(
            "chat_stream_error",
            token_count=token_count,
            error=str(e),
            error_type=type(e).__name__,
        )
        yield _sse({"error": "Stream error"})

    finally:
        # also runs when the client disconnects and the task is cancelled
        await stream.aclose()

    logger.info("chat_response_sent", token_count=token_count, completed=completed)


def create_app(
    retriever: Optional[Retriever] = None,
    generator: Optional[Generator] = None,
    api_key: Optional[str] = config.API_KEY,
    rate_limiter: Optional[RateLimiter] = None,
    ollama_client: Optional[OllamaClient] = None,
) -> Quart:
    """Create the Quart application with its services injected.

    Args:
        retriever: Knowledge base retriever (default built from config)
        generator: Answer generator (default built from config)
        api_key: Required X-API-Key value for /api routes (None disables the check)
        rate_limiter: Limiter for /api routes (default built from config)
        ollama_client: Client used by the readiness probe
    """
    app = Quart(
        __name__,
        static_folder=str(config.PUBLIC_DIR),
        static_url_path="",
    )

    ollama_client = ollama_client or OllamaClient()
    retriever = retriever or Retriever()
    generator = generator or Generator(client=ollama_client)

    if rate_limiter is None and config.RATE_LIMIT_MAX_REQUESTS > 0:
        rate_limiter = RateLimiter(
            max_requests=config.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        )

    app = cors(app, allow_origin=config.CORS_ALLOW_ORIGIN)
    register_security_headers(app, content_security_policy=config.CONTENT_SECURITY_POLICY)
    register_api_guards(app, api_key=api_key, rate_limiter=rate_limiter)

    async def initialize_knowledge_base():
        try:
            await retriever.initialize()
        except IngestionError as e:
            # first chat request retries the ingestion
            logger.error("startup_ingestion_failed", error=str(e))

    @app.before_serving
    async def startup():
        logger.info(
            "app_starting",
            chat_model=generator.model,
            embedding_model=retriever.embedder.model,
            knowledge_dir=str(retriever.loader.knowledge_dir),
        )
        app.add_background_task(initialize_knowledge_base)

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a question as a server-sent event stream.

        Expects JSON body:
        {
            "message": "user message text"   // 1-2000 characters
        }

        Streams:
            data: {"token":"..."}  (one per generated piece)
            data: {"done":true}    (on completion)
            data: {"error":"..."}  (if generation fails mid-stream)
        """
        data = await request.get_json(silent=True)

        try:
            chat_request = ChatRequest.model_validate(data if data is not None else {})
        except ValidationError as e:
            message = _validation_message(e)
            logger.warning("chat_request_invalid", error=message)
            return jsonify({"error": message}), 400

        user_message = chat_request.message

        logger.info(
            "chat_request_received",
            message_length=len(user_message),
            user_message_preview=user_message[:100],
        )

        stream = None
        try:
            context = await retriever.retrieve_context(user_message)

            if context:
                logger.info("rag_retrieval_completed", context_length=len(context))
            else:
                logger.info("no_relevant_context_found")

            stream = generator.generate_stream(user_message, context)
            first_event = await _first_event(stream)

        except Exception as e:
            logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
            if stream is not None:
                await stream.aclose()
            return jsonify({
                "error": "An error occurred processing your request. Please try again."
            }), 500

        response = Response(
            _event_stream(first_event, stream),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )
        response.timeout = None
        return response

    @app.route("/api/health")
    async def api_health():
        """Connectivity check used by the web client."""
        return jsonify({
            "status": "connected",
            "ollama": "running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if app can serve requests.

        Checks:
        - Ollama service is reachable
        - Chat and embedding models are installed
        """
        checks = {
            "status": "healthy",
            "ollama": False,
            "models": False,
            "retriever": retriever.get_stats(),
        }

        try:
            models = await ollama_client.list_models()
            checks["ollama"] = True

            missing = [
                model
                for model in (generator.model, retriever.embedder.model)
                if not model_installed(model, models)
            ]

            if missing:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing models: {', '.join(missing)}"
            else:
                checks["models"] = True

            status_code = 200 if checks["status"] == "healthy" else 503
            return jsonify(checks), status_code

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)
            return jsonify(checks), 503

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    # For development - use `hypercorn kbchat.main:app` in production
    app.run(host=config.HOST, port=config.PORT)
