"""Local Hugging Face causal-LM provider."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, AsyncIterator

from ragengine.config import ProviderSettings
from ragengine.errors import ProviderError, ProviderUnavailable
from ragengine.generation.base import GenerationProvider
from ragengine.models import GeneratedText

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "Qwen/Qwen2.5-1.5B-Instruct"

_END = object()


class TransformersProvider(GenerationProvider):
    """Runs a chat model in-process through ``transformers``.

    The model is loaded on first use in a worker thread. Streaming uses
    ``TextIteratorStreamer``; closing a stream stops generation at the next
    decoding step.
    """

    kind = "transformers"

    def __init__(self, config: ProviderSettings) -> None:
        super().__init__(config)
        self._model_name = config.model or DEFAULT_MODEL
        self._tokenizer: Any = None
        self._model: Any = None
        self._load_lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        with self._load_lock:
            if self._model is not None:
                return
            try:
                from transformers import AutoModelForCausalLM, AutoTokenizer

                tokenizer = AutoTokenizer.from_pretrained(self._model_name, trust_remote_code=True)
                model = AutoModelForCausalLM.from_pretrained(self._model_name, trust_remote_code=True)
            except (ImportError, OSError, ValueError) as exc:
                raise ProviderError(self.provider_id, f"cannot load {self._model_name}: {exc}", retryable=False) from exc
            if tokenizer.pad_token is None and tokenizer.eos_token is not None:
                tokenizer.pad_token = tokenizer.eos_token
            if getattr(model.config, "pad_token_id", None) is None and tokenizer.pad_token_id is not None:
                model.config.pad_token_id = tokenizer.pad_token_id
            if self.config.device:
                model.to(self.config.device)
            self._tokenizer, self._model = tokenizer, model
            LOGGER.info("Loaded generation model %s", self._model_name)

    def _count_native_tokens(self, text: str) -> int:
        if self._tokenizer is None:
            return super()._count_native_tokens(text)
        return len(self._tokenizer.encode(text, add_special_tokens=False))

    def _encode(self, prompt: str) -> dict[str, Any]:
        messages = [{"role": "user", "content": prompt}]
        if getattr(self._tokenizer, "chat_template", None):
            prompt = self._tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        inputs = self._tokenizer(prompt, return_tensors="pt", padding=True)
        if self.config.device:
            inputs = inputs.to(self.config.device)
        return dict(inputs)

    def _generation_kwargs(self, inputs: dict[str, Any], max_tokens: int) -> dict[str, Any]:
        kwargs = {**inputs, "max_new_tokens": max_tokens}
        if self.config.temperature > 0:
            kwargs.update(do_sample=True, temperature=self.config.temperature)
        return kwargs

    def _generate_sync(self, prompt: str, max_tokens: int) -> GeneratedText:
        self._ensure_loaded()
        import torch

        inputs = self._encode(prompt)
        prompt_length = inputs["input_ids"].shape[1]
        try:
            with torch.no_grad():
                output = self._model.generate(**self._generation_kwargs(inputs, max_tokens))
        except RuntimeError as exc:
            raise ProviderUnavailable(self.provider_id, f"generation failed: {exc}") from exc
        generated_tokens = output[0][prompt_length:]
        text = self._tokenizer.decode(generated_tokens, skip_special_tokens=True).strip()
        return GeneratedText(
            text=text,
            input_tokens=self.count_tokens(prompt),
            output_tokens=self.count_tokens(text),
            provider_id=self.provider_id,
        )

    async def generate(self, prompt: str, max_tokens: int) -> GeneratedText:
        return await asyncio.to_thread(self._generate_sync, prompt, max_tokens)

    async def stream(self, prompt: str, max_tokens: int) -> AsyncIterator[str]:
        await asyncio.to_thread(self._ensure_loaded)
        from transformers import StoppingCriteria, StoppingCriteriaList, TextIteratorStreamer

        stop = threading.Event()

        class _StopOnClose(StoppingCriteria):
            def __call__(self, input_ids, scores, **kwargs) -> bool:  # noqa: ANN001
                return stop.is_set()

        streamer = TextIteratorStreamer(self._tokenizer, skip_prompt=True, skip_special_tokens=True)
        kwargs = self._generation_kwargs(self._encode(prompt), max_tokens)
        kwargs.update(streamer=streamer, stopping_criteria=StoppingCriteriaList([_StopOnClose()]))
        worker = threading.Thread(target=self._model.generate, kwargs=kwargs, daemon=True)
        worker.start()
        try:
            while True:
                piece = await asyncio.to_thread(next, streamer, _END)
                if piece is _END:
                    break
                if piece:
                    yield piece
        finally:
            stop.set()
