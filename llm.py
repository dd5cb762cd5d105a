"""Anthropic client wrapper with retry, jitter and a circuit breaker."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Optional

import anthropic

from config import get_settings
from errors import LLMRequestFailed, LLMUnavailable


logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY_SECS = 1.0
MAX_DELAY_SECS = 10.0
MAX_JITTER_SECS = 0.5
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

FAILURE_THRESHOLD = 5
RESET_TIMEOUT_SECS = 60.0

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        reset_timeout: float = RESET_TIMEOUT_SECS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CLOSED
        self.failures = 0
        self.opened_at: Optional[float] = None
        self.trial_in_flight = False

    def allow(self) -> bool:
        with self._lock:
            if self.state == OPEN:
                if self._clock() - (self.opened_at or 0) >= self.reset_timeout:
                    self.state = HALF_OPEN
                    self.trial_in_flight = True
                    logger.info("llm_circuit: state=half_open")
                    return True
                return False
            if self.state == HALF_OPEN:
                # one trial request at a time
                if self.trial_in_flight:
                    return False
                self.trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.state != CLOSED:
                logger.info("llm_circuit: state=closed")
            self.state = CLOSED
            self.failures = 0
            self.opened_at = None
            self.trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.trial_in_flight = False
            if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
                self.state = OPEN
                self.opened_at = self._clock()
                logger.warning(f"llm_circuit: state=open failures={self.failures}")

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {"state": self.state, "failures": self.failures}


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, anthropic.APIConnectionError):
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code in RETRYABLE_STATUS
    return False


def retry_delay(attempt: int, jitter: Optional[float] = None) -> float:
    if jitter is None:
        jitter = random.uniform(0, MAX_JITTER_SECS)
    return min(BASE_DELAY_SECS * 2 ** (attempt - 1) + jitter, MAX_DELAY_SECS)


class AnthropicClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_secs: Optional[float] = None,
        client: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.anthropic_model
        self.timeout_secs = timeout_secs or settings.anthropic_timeout_secs
        self._sleep = sleep
        self.breaker = breaker or CircuitBreaker()
        self._client = client
        if self._client is None and self.api_key:
            self._client = anthropic.Anthropic(
                api_key=self.api_key, timeout=self.timeout_secs, max_retries=0
            )

    def is_available(self) -> bool:
        return self._client is not None

    def circuit_status(self) -> dict[str, Any]:
        return self.breaker.status()

    def _call(self, **kwargs: Any) -> Any:
        if not self.is_available():
            raise LLMUnavailable("AI service is not configured")
        if not self.breaker.allow():
            raise LLMUnavailable(
                "AI service is temporarily unavailable", self.breaker.status()
            )

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                message = self._client.messages.create(model=self.model, **kwargs)
            except anthropic.APIError as exc:
                if is_retryable(exc) and attempt < MAX_RETRIES:
                    delay = retry_delay(attempt)
                    logger.warning(
                        f"llm_retry: attempt={attempt} delay={delay:.2f} error={exc}"
                    )
                    self._sleep(delay)
                    continue
                self.breaker.record_failure()
                logger.error(f"llm_failed: attempts={attempt} error={exc}")
                raise LLMRequestFailed(
                    f"AI request failed: {exc}", {"attempts": attempt}
                ) from exc
            except Exception:
                self.breaker.record_failure()
                raise
            self.breaker.record_success()
            return message
        raise LLMRequestFailed("AI request failed", {"attempts": MAX_RETRIES})

    def create_message(
        self,
        messages: list[dict[str, Any]],
        system: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: int = 1024,
    ) -> Any:
        kwargs: dict[str, Any] = {"messages": messages, "max_tokens": max_tokens}
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools
        return self._call(**kwargs)

    def generate(
        self,
        prompt: str,
        max_tokens: int = 1024,
        system: Optional[str] = None,
        timeout_secs: Optional[float] = None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
        }
        if system:
            kwargs["system"] = system
        if timeout_secs:
            kwargs["timeout"] = timeout_secs
        message = self._call(**kwargs)
        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        usage = getattr(message, "usage", None)
        return LLMResponse(
            content=text,
            model=getattr(message, "model", self.model),
            usage={
                "input_tokens": getattr(usage, "input_tokens", 0),
                "output_tokens": getattr(usage, "output_tokens", 0),
            },
            stop_reason=getattr(message, "stop_reason", None),
        )


@lru_cache(maxsize=1)
def get_llm_client() -> AnthropicClient:
    """Process-wide client so every caller shares one circuit breaker."""
    return AnthropicClient()
