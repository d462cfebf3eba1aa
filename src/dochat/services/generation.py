"""Generation gateways for dochat."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol

LOGGER = logging.getLogger(__name__)

_CONTEXT_BLOCK = re.compile(r"# Source 1 \([^\n]*\)\n(?P<body>.*?)(?=\n\n---|\Z)", re.DOTALL)
_QUESTION_LINE = re.compile(r"Question:\s*\n?(?P<question>[^\n]+)")


class GenerationUnavailable(RuntimeError):
    """Raised when the chat model cannot produce a completion."""


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    use_model: bool = False
    device: str | None = None


class GenerationGateway(Protocol):
    """Protocol describing completion behaviour."""

    async def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Return generated text for ``prompt``."""


class TemplateGenerator:
    """Deterministic generator used for tests and offline environments.

    Answers are extracted from the prompt itself: the first rendered source
    block is quoted back, and prompts without sources echo the question.
    """

    async def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        source = _CONTEXT_BLOCK.search(prompt)
        if source:
            body = source.group("body").strip()
            return f"## Answer\n\nFrom the provided context: {body}"
        question = _QUESTION_LINE.search(prompt)
        if question:
            return f"This passage answers the question: {question.group('question').strip()}"
        return prompt.strip()[:max_tokens]


class TransformersGenerator:
    """Generator that optionally calls into Qwen-family chat models via Transformers."""

    def __init__(self, config: GenerationConfig | None = None, fallback: GenerationGateway | None = None) -> None:
        self._config = config or GenerationConfig()
        self._fallback = fallback or TemplateGenerator()
        self._tokenizer = None
        self._model = None
        if not self._config.use_model:
            LOGGER.info("TransformersGenerator running in template-only mode.")
            return
        try:
            from transformers import AutoModelForCausalLM, AutoTokenizer

            self._tokenizer = AutoTokenizer.from_pretrained(
                self._config.model,
                trust_remote_code=True,
            )
            self._model = AutoModelForCausalLM.from_pretrained(
                self._config.model,
                trust_remote_code=True,
            )
            if self._tokenizer.pad_token is None and self._tokenizer.eos_token is not None:
                self._tokenizer.pad_token = self._tokenizer.eos_token
            if getattr(self._model.config, "pad_token_id", None) is None and self._tokenizer.pad_token_id is not None:
                self._model.config.pad_token_id = self._tokenizer.pad_token_id
            if self._config.device:
                self._model.to(self._config.device)
            LOGGER.info("Loaded generation model %s", self._config.model)
        except Exception as exc:  # pragma: no cover - import/runtime guard
            LOGGER.warning("Falling back to template generator: %s", exc)
            self._tokenizer = None
            self._model = None

    async def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        if self._tokenizer is None or self._model is None:
            return await self._fallback.generate(prompt, max_tokens, temperature)
        try:
            return await asyncio.to_thread(self._generate_sync, prompt, max_tokens, temperature)
        except Exception as exc:
            raise GenerationUnavailable(f"Generation model failed: {exc}") from exc

    def _generate_sync(self, prompt: str, max_tokens: int, temperature: float) -> str:
        import torch

        if hasattr(self._tokenizer, "apply_chat_template"):
            text = self._tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                tokenize=False,
                add_generation_prompt=True,
            )
        else:
            text = prompt
        tokenized = self._tokenizer(text, return_tensors="pt", padding=True)
        input_ids = tokenized.input_ids
        attention_mask = tokenized.attention_mask
        prompt_length = input_ids.shape[1]
        if self._config.device:
            input_ids = input_ids.to(self._config.device)
            attention_mask = attention_mask.to(self._config.device)
        with torch.no_grad():
            output = self._model.generate(
                input_ids,
                attention_mask=attention_mask,
                max_new_tokens=max_tokens,
                temperature=temperature,
                do_sample=temperature > 0,
            )
        generated_tokens = output[0][prompt_length:]
        generated = self._tokenizer.decode(generated_tokens, skip_special_tokens=True)
        return generated.strip()
