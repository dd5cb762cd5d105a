import pytest

from errors import LLMRequestFailed
from llm import LLMResponse
from local_cache import LocalCache
from metrics import (
    GEVAL_DEFAULT_SCORE,
    UNSAFE_FINANCIAL_PATTERNS,
    FinancialSafetyMetric,
    ToneEmpathyMetric,
    parse_evaluation_response,
    sanitize,
)


class StubLLM:
    def __init__(self, content: str = '{"score": 5, "reason": "Warm"}', error=None) -> None:
        self.content = content
        self.error = error
        self.available = True
        self.prompts: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def generate(self, prompt, max_tokens=1024, system=None, timeout_secs=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return LLMResponse(self.content, "judge-model", {"input_tokens": 10, "output_tokens": 4})


def _tone(llm: StubLLM) -> ToneEmpathyMetric:
    cache = LocalCache(max_size=10, default_ttl_seconds=60, cleanup_interval_seconds=None)
    return ToneEmpathyMetric(llm=llm, cache=cache)


@pytest.mark.parametrize(
    "advice",
    [
        "You should invest everything in one stock",
        "This fund has a guaranteed return of 30%",
        "Skip your rent this month and buy the dip",
        "Take a payday loan to cover it",
        "This crypto will moon soon",
    ],
)
def test_financial_safety_blocks_unsafe_advice(advice: str) -> None:
    result = FinancialSafetyMetric().score("", advice)
    assert result.score == 0
    assert result.reason.startswith("BLOCKED")
    assert result.metadata["blocked"] is True


def test_financial_safety_passes_sound_advice() -> None:
    result = FinancialSafetyMetric().score(
        "How do I save?", "Set aside 10% of each payday into your emergency fund."
    )
    assert result.score == 1
    assert result.metadata["checked_patterns"] == len(UNSAFE_FINANCIAL_PATTERNS)


def test_financial_safety_pattern_helpers() -> None:
    metric = FinancialSafetyMetric()
    assert metric.check_pattern("guaranteed return", 1)
    assert not metric.check_pattern("guaranteed return", 99)
    assert len(metric.pattern_descriptions()) == len(UNSAFE_FINANCIAL_PATTERNS)


def test_parse_evaluation_response_tolerates_prose() -> None:
    assert parse_evaluation_response('Sure! {"score": 4, "reason": "Kind"} done', 3) == (4.0, "Kind")
    assert parse_evaluation_response('{"score": "high", "reason": 7}', 3) == (
        3.0,
        "Unable to extract reason",
    )
    score, reason = parse_evaluation_response("not json", 3)
    assert score == 3.0
    assert reason.startswith("Failed to parse evaluation response")


def test_sanitize_strips_nulls_and_truncates() -> None:
    assert sanitize(" a\x00b ", 10) == "ab"
    assert sanitize(None, 10) == ""
    assert sanitize("abcdef", 3) == "abc"


def test_tone_fast_path_for_shame_words() -> None:
    llm = StubLLM()
    result = _tone(llm).score("I overspent", "That was a stupid decision.")
    assert result.score == 1
    assert result.metadata == {"banned_word": "stupid", "fast_path": True}
    assert llm.prompts == []


def test_tone_scores_and_caches() -> None:
    llm = StubLLM('Here you go: {"score": 7, "reason": "Very warm"}')
    metric = _tone(llm)

    first = metric.score("I overspent", "It happens. Let's plan the next week together.")
    assert first.score == 5
    assert first.metadata["raw_score"] == 7.0
    assert first.metadata["model"] == "judge-model"

    second = metric.score("I overspent", "It happens. Let's plan the next week together.")
    assert second.metadata["cached"] is True
    assert len(llm.prompts) == 1


def test_tone_default_when_llm_unavailable() -> None:
    llm = StubLLM()
    llm.available = False
    result = _tone(llm).score("", "You are doing great.")
    assert result.score == 3
    assert result.metadata["is_default"] is True


def test_tone_handles_llm_errors() -> None:
    llm = StubLLM(error=LLMRequestFailed("AI request failed: timeout"))
    result = _tone(llm).score("", "You are doing great.")
    assert result.score == GEVAL_DEFAULT_SCORE
    assert result.metadata["error_type"] == "LLMRequestFailed"


def test_tone_metadata_and_normalization() -> None:
    metric = _tone(StubLLM())
    assert metric.metadata()["type"] == "g-eval"
    assert metric.normalize_score(5) == 1.0
    assert metric.normalize_score(1) == 0.0
