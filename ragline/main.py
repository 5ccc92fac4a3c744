"""Quart application exposing ingestion and question answering."""
from pathlib import Path
from typing import Optional

import structlog
from quart import Quart, jsonify, request

from ragline.config import load_settings
from ragline.errors import ConfigurationError, UpstreamCallFailure
from ragline.log import configure_logging
from ragline.rag.models import make_policy
from ragline.rag.pipeline import RAGPipeline

logger = structlog.get_logger()


def _error(message: str, status: int, stage: Optional[str] = None):
    body = {"success": False, "error": message}
    if stage:
        body["stage"] = stage
    return jsonify(body), status


def create_app(pipeline: Optional[RAGPipeline] = None) -> Quart:
    """Build the Quart app.

    Args:
        pipeline: Pipeline to serve (built from settings at startup if omitted)
    """
    app = Quart(__name__)
    app.config["PIPELINE"] = pipeline

    @app.before_serving
    async def startup():
        if app.config["PIPELINE"] is None:
            configure_logging()
            app.config["PIPELINE"] = RAGPipeline(load_settings())
            app.config["OWNS_PIPELINE"] = True

    @app.after_serving
    async def shutdown():
        if app.config.get("OWNS_PIPELINE"):
            await app.config["PIPELINE"].aclose()

    @app.route("/api/ask", methods=["POST"])
    async def ask():
        """Answer a question from the index.

        Expects JSON body:
        {
            "question": "question text",   // "prompt" is accepted too
            "top_k": 3                     // optional
        }

        Returns JSON:
        {
            "success": true,
            "answer": "...",
            "found": true,
            "sources": [{"id", "similarity", "preview", "full_text"}, ...]
        }
        """
        data = await request.get_json(silent=True) or {}
        question = (data.get("question") or data.get("prompt") or "").strip()
        if not question:
            return _error("Missing 'question' in request body", 400)

        top_k = data.get("top_k")
        if top_k is not None and (not isinstance(top_k, int) or top_k < 1):
            return _error("'top_k' must be a positive integer", 400)

        logger.info("ask_request_received", question_preview=question[:100], top_k=top_k)

        try:
            result = await app.config["PIPELINE"].ask(question, top_k=top_k)
        except (ConfigurationError, ValueError) as e:
            return _error(str(e), 400)
        except UpstreamCallFailure as e:
            logger.error("ask_failed", stage=e.stage, error=str(e))
            return _error("Failed to process your query", 502, stage=e.stage)
        except Exception as e:
            logger.error("ask_endpoint_error", error=str(e), error_type=type(e).__name__)
            return _error("Failed to process your query", 500)

        return jsonify({"success": True, **result.model_dump()})

    @app.route("/api/ingest", methods=["POST"])
    async def ingest():
        """Ingest a text file from the server's filesystem.

        Expects JSON body:
        {
            "path": "corpus.txt",
            "unit": "word",        // optional: word | char | sentence
            "size": 500,           // optional
            "overlap": 50,         // optional
            "rebuild": false       // optional
        }
        """
        data = await request.get_json(silent=True) or {}
        path = data.get("path")
        if not path:
            return _error("Missing 'path' in request body", 400)

        pipeline: RAGPipeline = app.config["PIPELINE"]
        settings = pipeline.settings

        try:
            policy = make_policy(
                data.get("unit", settings.chunk_unit),
                int(data.get("size", settings.chunk_size)),
                int(data.get("overlap", settings.chunk_overlap)),
            )
            report = await pipeline.ingest_file(
                Path(path), policy, rebuild=bool(data.get("rebuild", False))
            )
        except (ConfigurationError, ValueError, TypeError) as e:
            return _error(str(e), 400)
        except UpstreamCallFailure as e:
            logger.error("ingest_failed", stage=e.stage, error=str(e))
            return _error(str(e), 502, stage=e.stage)

        return jsonify({"success": True, **report.model_dump()})

    @app.route("/api/index", methods=["GET"])
    async def index_info():
        return jsonify(await app.config["PIPELINE"].index_stats())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness check: Ollama reachable and required models available."""
        pipeline: RAGPipeline = app.config["PIPELINE"]
        settings = pipeline.settings
        checks = {"status": "healthy", "ollama": False, "models": False}

        try:
            models = await pipeline.llm_client.list_models()
            checks["ollama"] = True

            missing = [
                m for m in (settings.chat_model, settings.embedding_model) if m not in models
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
        """Liveness check - confirm if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
