import hashlib
import math
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.config import Settings, settings as default_settings
from app.errors import ConfigurationError
from app.logging_config import get_logger
from app.services.concurrency import ConcurrencyGate
from app.services.llm import LLMProvider, LLMResponse, OpenAIProvider
from app.services.retry import retry_async

logger = get_logger("summarizer")

SYSTEM_INSTRUCTION = (
    "You summarize WhatsApp messages. "
    "Reply with a 1-2 sentence plain-language summary of the user's text. "
    "Do not use markdown, bullet points or headings. Do not invent facts."
)

LANGUAGE_NAMES = {
    "en": "English",
    "ar": "Arabic",
    "es": "Spanish",
}

# USD per 1M tokens
MODEL_PRICING = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
}

DRY_RUN_SNIPPET_CHARS = 120

_SUMMARIZE_PREFIX = re.compile(r"^summarize\s*:\s*", re.IGNORECASE)


@dataclass
class SummaryResult:
    text: str
    model: str
    fingerprint: str
    input_chars: int
    usage: Optional[dict] = None
    cost_estimate: Optional[float] = None
    dry_run: bool = False


def strip_summarize_prefix(text: str) -> str:
    return _SUMMARIZE_PREFIX.sub("", text or "")


def clip_input(text: str, max_chars: int) -> str:
    trimmed = strip_summarize_prefix(text).strip()
    return trimmed[:max_chars]


def clip_output(text: str, max_chars: int) -> str:
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1].rstrip() + "…"


def compute_fingerprint(model: str, clipped_text: str) -> str:
    return hashlib.sha256(f"{model}::{clipped_text}".encode("utf-8")).hexdigest()


def estimate_tokens_from_chars(chars: int) -> int:
    return math.ceil(max(0, chars) / 4)


def estimate_cost(
    model: str,
    usage: Optional[dict],
    prompt_chars: int,
    completion_chars: int,
) -> Optional[float]:
    """Best-effort USD estimate; None for models missing from MODEL_PRICING."""
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        return None
    usage = usage or {}
    input_tokens = usage.get("prompt_tokens")
    if input_tokens is None:
        input_tokens = estimate_tokens_from_chars(prompt_chars)
    output_tokens = usage.get("completion_tokens")
    if output_tokens is None:
        output_tokens = estimate_tokens_from_chars(completion_chars)
    cost = (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]
    return round(cost, 6)


def build_instruction(lang: Optional[str]) -> str:
    language = LANGUAGE_NAMES.get((lang or "auto").lower())
    if language:
        return f"{SYSTEM_INSTRUCTION} Write the summary in {language}."
    return f"{SYSTEM_INSTRUCTION} Write the summary in the same language as the text."


class Summarizer:
    """Concurrency-limited, retrying summarization client."""

    def __init__(
        self,
        config: Settings = default_settings,
        gate: Optional[ConcurrencyGate] = None,
        provider: Optional[LLMProvider] = None,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config
        self.gate = gate or ConcurrencyGate(config.openai_concurrency)
        self._provider = provider
        self._sleep_func = sleep_func

    @property
    def model(self) -> str:
        return self.config.openai_model

    def _get_provider(self) -> LLMProvider:
        if self._provider is None:
            if not self.config.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            self._provider = OpenAIProvider(
                api_key=self.config.openai_api_key,
                default_model=self.config.openai_model,
                base_url=self.config.openai_api_url,
                timeout_seconds=self.config.openai_timeout_seconds,
            )
        return self._provider

    async def summarize(self, text: str, lang: Optional[str] = "auto") -> SummaryResult:
        clipped = clip_input(text, self.config.openai_max_input_chars)
        fingerprint = compute_fingerprint(self.model, clipped)

        if self.config.dry_run:
            snippet = re.sub(r"\s+", " ", clipped)[:DRY_RUN_SNIPPET_CHARS]
            return SummaryResult(
                text=clip_output(f"[DRY RUN] No model call was made. Preview: {snippet}", self.config.openai_max_output_chars),
                model=self.model,
                fingerprint=fingerprint,
                input_chars=len(clipped),
                dry_run=True,
            )

        provider = self._get_provider()
        instruction = build_instruction(lang)
        messages = [
            {"role": "system", "content": instruction},
            {"role": "user", "content": clipped},
        ]

        async def call() -> LLMResponse:
            return await provider.generate(
                messages,
                model=self.model,
                temperature=self.config.openai_temperature,
                max_tokens=max(16, self.config.openai_max_output_tokens),
            )

        start = time.monotonic()
        async with self.gate:
            response = await retry_async(
                call,
                max_retries=self.config.openai_max_retries,
                base_seconds=self.config.openai_backoff_base_seconds,
                max_seconds=self.config.openai_backoff_max_seconds,
                sleep_func=self._sleep_func,
                label="openai.summarize",
            )

        raw_text = (response.content or "").strip()
        cost = estimate_cost(self.model, response.usage, len(instruction) + len(clipped), len(raw_text))
        logger.info(
            "Summary generated",
            extra={
                "context": {
                    "model": self.model,
                    "input_chars": len(clipped),
                    "output_chars": len(raw_text),
                    "cost_estimate": cost,
                    "elapsed_ms": int((time.monotonic() - start) * 1000),
                    "fingerprint": fingerprint[:12],
                }
            },
        )
        return SummaryResult(
            text=clip_output(raw_text, self.config.openai_max_output_chars),
            model=response.model or self.model,
            fingerprint=fingerprint,
            input_chars=len(clipped),
            usage=response.usage,
            cost_estimate=cost,
        )
