"""Grounded answer synthesis from retrieved passages."""
import asyncio
from typing import List, Sequence

import structlog

from ragline.config import Settings
from ragline.errors import UpstreamCallFailure
from ragline.llm_client import OllamaClient
from ragline.rag.models import RetrievalMatch

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You answer questions using only the numbered context passages you are "
    "given. Do not use outside knowledge."
)

PROMPT_TEMPLATE = """Use ONLY the following context to answer the question.
If the answer is not contained in the context, say that you don't know.

Context:
---------------------
{context}
---------------------

Question: {question}
Answer:"""


class AnswerSynthesizer:
    """Builds a bounded context block and asks the chat model for an answer."""

    def __init__(self, llm_client: OllamaClient, settings: Settings):
        self.llm_client = llm_client
        self.settings = settings

    def build_context(self, matches: Sequence[RetrievalMatch]) -> str:
        """Format matches as numbered passages within the context budget."""
        max_chars = self.settings.max_context_chars
        parts: List[str] = []
        total_chars = 0

        for rank, match in enumerate(matches, 1):
            passage = f"[{rank}] {match.text.strip()}\n"

            if total_chars + len(passage) > max_chars:
                remaining = max_chars - total_chars
                if remaining > 200:  # Only add if we have meaningful space
                    parts.append(passage[:remaining] + "...\n")
                break

            parts.append(passage)
            total_chars += len(passage)

        context = "\n".join(parts)
        logger.debug("context_formatted", num_passages=len(parts), total_chars=len(context))
        return context

    def build_prompt(self, question: str, context: str) -> str:
        return PROMPT_TEMPLATE.format(context=context, question=question.strip())

    async def synthesize(self, question: str, matches: Sequence[RetrievalMatch]) -> str:
        """Answer a question from the given matches.

        With no matches, or no passage fitting the context budget, the
        fixed no-answer message is returned and the chat model is not called.
        """
        if not matches:
            logger.info("no_matches_short_circuit")
            return self.settings.no_answer_message

        context = self.build_context(matches)
        if not context.strip():
            logger.warning("context_empty_after_budget", max_chars=self.settings.max_context_chars)
            return self.settings.no_answer_message

        prompt = self.build_prompt(question, context)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        try:
            async with asyncio.timeout(self.settings.request_timeout):
                response = await self.llm_client.chat(
                    messages,
                    model=self.settings.chat_model,
                    temperature=self.settings.generation_temperature,
                    max_tokens=self.settings.generation_max_tokens,
                )
        except TimeoutError as e:
            raise UpstreamCallFailure(
                f"Generation timed out after {self.settings.request_timeout}s",
                stage="generation",
            ) from e
        except Exception as e:
            raise UpstreamCallFailure(f"Generation failed: {e}", stage="generation") from e

        answer = (response.get("message", {}).get("content") or "").strip()
        if not answer:
            logger.error("empty_llm_response", model=self.settings.chat_model)
            raise UpstreamCallFailure("Empty response from LLM", stage="generation")

        logger.info("answer_synthesized", passages=len(matches), answer_length=len(answer))
        return answer
