"""Unit tests for the AnswerSynthesizer."""
import httpx
import pytest

from ragline.errors import UpstreamCallFailure
from ragline.rag.models import RetrievalMatch
from ragline.rag.synthesizer import AnswerSynthesizer
from tests.conftest import FakeLLMClient


def _match(chunk_id: str, text: str, score: float = 0.9) -> RetrievalMatch:
    return RetrievalMatch(id=chunk_id, score=score, metadata={"text": text})


@pytest.mark.asyncio
async def test_no_matches_returns_fixed_message_without_llm_call(settings, fake_llm):
    synthesizer = AnswerSynthesizer(fake_llm, settings)

    answer = await synthesizer.synthesize("What are cats?", [])

    assert answer == settings.no_answer_message
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_prompt_contains_numbered_passages_and_question(settings, fake_llm):
    synthesizer = AnswerSynthesizer(fake_llm, settings)
    matches = [_match("chunk_0", "Cats are mammals."), _match("chunk_1", "Dogs bark.")]

    answer = await synthesizer.synthesize("  What are cats? ", matches)

    assert answer == "Cats are mammals."
    call = fake_llm.calls[0]
    assert call["model"] == settings.chat_model
    assert call["temperature"] == settings.generation_temperature
    assert call["max_tokens"] == settings.generation_max_tokens
    assert call["messages"][0]["role"] == "system"
    prompt = call["messages"][1]["content"]
    assert "[1] Cats are mammals." in prompt
    assert "[2] Dogs bark." in prompt
    assert prompt.index("[1]") < prompt.index("[2]")
    assert "Question: What are cats?" in prompt


def test_context_respects_character_budget(settings, fake_llm):
    synthesizer = AnswerSynthesizer(
        fake_llm, settings.with_overrides(max_context_chars=500)
    )
    matches = [_match(f"chunk_{i}", "x" * 300) for i in range(3)]

    context = synthesizer.build_context(matches)

    assert "[1]" in context
    assert "[2]" not in context
    assert len(context) <= 500 + len("...\n") + 1


def test_context_truncates_partial_passage_when_room_remains(settings, fake_llm):
    synthesizer = AnswerSynthesizer(
        fake_llm, settings.with_overrides(max_context_chars=600)
    )
    matches = [_match("chunk_0", "a" * 100), _match("chunk_1", "b" * 1000)]

    context = synthesizer.build_context(matches)

    assert "[2] bbb" in context
    assert context.rstrip().endswith("...")


@pytest.mark.asyncio
async def test_llm_error_is_a_generation_failure(settings):
    llm = FakeLLMClient(error=httpx.ConnectError("connection refused"))
    synthesizer = AnswerSynthesizer(llm, settings)

    with pytest.raises(UpstreamCallFailure) as exc_info:
        await synthesizer.synthesize("q", [_match("chunk_0", "text")])

    assert exc_info.value.stage == "generation"


@pytest.mark.asyncio
async def test_empty_llm_answer_is_a_generation_failure(settings):
    synthesizer = AnswerSynthesizer(FakeLLMClient(answer="   "), settings)

    with pytest.raises(UpstreamCallFailure, match="Empty response"):
        await synthesizer.synthesize("q", [_match("chunk_0", "text")])


@pytest.mark.asyncio
async def test_context_too_small_for_any_passage_skips_llm(settings, fake_llm):
    synthesizer = AnswerSynthesizer(
        fake_llm, settings.with_overrides(max_context_chars=150)
    )

    answer = await synthesizer.synthesize("q", [_match("chunk_0", "x" * 300)])

    assert answer == settings.no_answer_message
    assert fake_llm.calls == []
