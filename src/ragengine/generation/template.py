"""Deterministic extractive provider used for tests and offline environments."""

from __future__ import annotations

import asyncio
import re
from typing import AsyncIterator, Sequence

from ragengine.generation.base import GenerationProvider
from ragengine.models import GeneratedText

NO_CONTEXT_ANSWER = "I do not have enough relevant context to answer that question."

_PASSAGE = re.compile(r"^\[(\d+)\] (.*?)\nSource: [^\n]*$", re.MULTILINE | re.DOTALL)
_QUESTION = re.compile(r"^Question: (.*)$", re.MULTILINE)
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"\w+")


def _words(text: str) -> set[str]:
    return {word for word in _WORD.findall(text.lower()) if len(word) > 2}


class TemplateProvider(GenerationProvider):
    """Answers with the context sentence that best overlaps the question.

    Reads the passages rendered by ``PromptBuilder`` (``[i] text`` followed by a
    ``Source:`` line) and cites the passage it quotes.
    """

    kind = "template"

    async def generate(self, prompt: str, max_tokens: int) -> GeneratedText:
        text = self._compose(prompt, max_tokens)
        return GeneratedText(
            text=text,
            input_tokens=self.count_tokens(prompt),
            output_tokens=self.count_tokens(text),
            provider_id=self.provider_id,
        )

    async def stream(self, prompt: str, max_tokens: int) -> AsyncIterator[str]:
        words = self._compose(prompt, max_tokens).split(" ")
        for index, word in enumerate(words):
            await asyncio.sleep(0)
            yield word if index == 0 else f" {word}"

    def _compose(self, prompt: str, max_tokens: int) -> str:
        passages = [(int(index), body.strip()) for index, body in _PASSAGE.findall(prompt)]
        questions = _QUESTION.findall(prompt)
        question = questions[-1] if questions else ""
        if not passages:
            return NO_CONTEXT_ANSWER
        index, sentence = self._best_sentence(question, passages)
        answer = f"{sentence} [{index}]"
        words = answer.split(" ")
        if max_tokens > 0 and len(words) > max_tokens:
            answer = " ".join(words[:max_tokens])
        return answer

    @staticmethod
    def _best_sentence(question: str, passages: Sequence[tuple[int, str]]) -> tuple[int, str]:
        query = _words(question)
        best: tuple[int, str] = passages[0][0], _SENTENCE_END.split(passages[0][1])[0]
        best_score = -1
        for index, body in passages:
            for sentence in _SENTENCE_END.split(body):
                sentence = " ".join(sentence.split())
                if not sentence:
                    continue
                score = len(query & _words(sentence))
                if score > best_score:
                    best, best_score = (index, sentence), score
        return best
