import json
import logging
import time
from typing import Any, Dict, List

import anthropic

from flashcard_svc.exceptions import FlashcardParseError

PROMPT_TEMPLATE = (
    "Generate {count} high-quality flashcards about {topic}. "
    "Format each card as JSON with 'question' and 'answer' fields. "
    "Return only the JSON array, no additional text."
)


def extract_flashcards(text: str) -> List[Dict[str, str]]:
    """
    Pull the flashcard array out of free-form model output.

    The substring from the first ``[`` to the last ``]`` is parsed as JSON when
    both brackets are present in that order; otherwise the whole text is.

    :raises FlashcardParseError: if the result is not a list of objects with
        string ``question`` and ``answer`` fields.
    """
    first = text.find("[")
    last = text.rfind("]")
    if first != -1 and last != -1 and last > first:
        text = text[first:last + 1]

    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise FlashcardParseError(f"Generated text is not valid JSON: {e}") from e

    if not isinstance(parsed, list):
        raise FlashcardParseError("Generated JSON is not an array")
    cards = []
    for item in parsed:
        if not isinstance(item, dict):
            raise FlashcardParseError("Flashcard entry is not an object")
        question = item.get("question")
        answer = item.get("answer")
        if not isinstance(question, str) or not isinstance(answer, str):
            raise FlashcardParseError("Flashcard entry is missing 'question' or 'answer'")
        cards.append({"question": question, "answer": answer})
    return cards


class FlashcardGenerator:
    """Single-shot flashcard generation through the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 4000, client: Any = None) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.client = client if client is not None else anthropic.Anthropic(api_key=api_key)

    def generate(self, topic: str, count: int = 10) -> List[Dict[str, Any]]:
        """
        Ask the model for ``count`` flashcards about ``topic``.

        :return: flashcards shaped ``{id, question, answer, topic, createdAt}``
            with temporary ids.
        :raises FlashcardParseError: if the output has no parseable card array.
        :raises anthropic.APIError: on provider failures.
        """
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": PROMPT_TEMPLATE.format(count=count, topic=topic)}],
        )
        text = self._response_text(response)
        cards = extract_flashcards(text)
        logging.info(f"Generated {len(cards)} flashcards for topic of length {len(topic)}")

        created_at = int(time.time() * 1000)
        return [
            {
                "id": f"temp-{index}",
                "question": card["question"],
                "answer": card["answer"],
                "topic": topic,
                "createdAt": created_at,
            }
            for index, card in enumerate(cards)
        ]

    @staticmethod
    def _response_text(response: Any) -> str:
        content = getattr(response, "content", None) or []
        if not content:
            raise FlashcardParseError("Model returned no content")
        text = getattr(content[0], "text", None)
        if not isinstance(text, str):
            raise FlashcardParseError("Model returned a non-text content block")
        return text
