"""Ollama client wrapper for embedding and chat completion calls."""
from typing import Dict, List, Optional

import httpx
import structlog

logger = structlog.get_logger()


class OllamaClient:
    """Async client for interacting with the Ollama API.

    The underlying ``httpx.AsyncClient`` is created on first use and reused
    until ``aclose()`` is called.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
            http_client: Pre-built client (tests inject a mock transport here)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Chat model to use
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum number of tokens to generate

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            httpx.HTTPError: On API errors
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options

        try:
            logger.info(
                "ollama_chat_request",
                model=model,
                message_count=len(messages),
            )

            response = await self._get_client().post(
                f"{self.base_url}/api/chat",
                json=payload,
            )
            response.raise_for_status()
            data = response.json()

            logger.info(
                "ollama_chat_response",
                model=model,
                response_length=len(data.get("message", {}).get("content", "")),
            )
            return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def embed(self, inputs: List[str], model: str) -> List[List[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            inputs: Texts to embed
            model: Embedding model to use

        Returns:
            One embedding per input, in input order

        Raises:
            httpx.HTTPError: On API errors
        """
        payload = {
            "model": model,
            "input": inputs,
        }

        try:
            logger.debug(
                "ollama_embedding_request",
                model=model,
                batch_size=len(inputs),
            )

            response = await self._get_client().post(
                f"{self.base_url}/api/embed",
                json=payload,
            )
            response.raise_for_status()
            embeddings = response.json().get("embeddings", [])

            logger.debug(
                "ollama_embedding_response",
                model=model,
                count=len(embeddings),
                dimension=len(embeddings[0]) if embeddings else 0,
            )
            return embeddings

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            response = await self._get_client().get(
                f"{self.base_url}/api/tags", timeout=5.0
            )
            response.raise_for_status()
            data = response.json()
            return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
