"""OpenAI-backed judge and semantic analysis."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from okk.engine.judge import JudgmentError, OpenAIJudge, parse_verdict
from okk.engine.semantic import analyze_text

from tests.conftest import FakeJudge


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def judge_with(create):
    judge = OpenAIJudge(api_key="sk-test", model="gpt-test", temperature=0)
    judge._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return judge


@pytest.mark.asyncio
async def test_json_mode_request():
    create = AsyncMock(return_value=completion('{"is_violation": false}'))
    result = await judge_with(create).judge("system", "payload")

    assert result == {"is_violation": False}
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0] == {"role": "system", "content": "system"}


@pytest.mark.asyncio
async def test_request_failure_wrapped():
    create = AsyncMock(side_effect=TimeoutError("slow"))
    with pytest.raises(JudgmentError):
        await judge_with(create).judge("s", "p")


@pytest.mark.asyncio
async def test_empty_content():
    create = AsyncMock(return_value=completion(None))
    with pytest.raises(JudgmentError):
        await judge_with(create).judge("s", "p")


@pytest.mark.asyncio
async def test_missing_api_key():
    with pytest.raises(JudgmentError):
        await OpenAIJudge(api_key="").judge("s", "p")


@pytest.mark.parametrize("content", ["not json", "[1, 2]", '"text"'])
def test_parse_verdict_rejects_non_objects(content):
    with pytest.raises(JudgmentError):
        parse_verdict(content)


@pytest.mark.asyncio
async def test_analyze_short_text():
    judge = FakeJudge()
    result = await analyze_text(judge, " a ", "rule")
    assert not result.is_violation
    assert judge.requests == []


@pytest.mark.asyncio
async def test_analyze_custom_prompt_context():
    judge = FakeJudge({"is_violation": True, "confidence": 1, "evidence": ""})
    result = await analyze_text(judge, "грубый ответ", "rude?", "Call Transcript", system_prompt="Check {context}.")
    assert result.is_violation
    assert result.confidence == 1.0
    assert result.evidence is None
    assert judge.requests[0][0] == "Check Call Transcript."


@pytest.mark.asyncio
async def test_analyze_requires_literal_true():
    judge = FakeJudge({"is_violation": "yes"})
    assert not (await analyze_text(judge, "text", "rule")).is_violation
