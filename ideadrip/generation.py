"""
Idea generation collaborator.

The dispatcher only depends on IdeaGenerator. OpenAIIdeaGenerator is the
production adapter; how ideas are actually chosen is the model's business.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from .errors import GenerationFailure
from .models import ContentPreferences, GeneratedBatch

logger = logging.getLogger(__name__)


class IdeaGenerator(ABC):
    """
    Contract: generate(user_id, count, preferences) -> GeneratedBatch.

    May return fewer items than asked for. Raise GenerationFailure (or let
    any other exception escape) when nothing usable came back.
    """

    @abstractmethod
    def generate(self, user_id: str, count: int, preferences: ContentPreferences) -> GeneratedBatch:
        raise NotImplementedError


SYSTEM_PROMPT = (
    "You are a YouTube strategist. You propose concrete, filmable video ideas "
    'and answer with JSON only: {"ideas": [{"title": str, "hook": str, "format": str}]}'
)


def build_prompt(count: int, preferences: ContentPreferences) -> str:
    lines = [f"Propose {count} video ideas for this week."]
    if preferences.focus_areas:
        lines.append("Focus on: " + ", ".join(sorted(preferences.focus_areas)) + ".")
    if preferences.avoid_topics:
        lines.append("Avoid: " + ", ".join(sorted(preferences.avoid_topics)) + ".")
    if preferences.preferred_formats:
        lines.append("Preferred formats: " + ", ".join(sorted(preferences.preferred_formats)) + ".")
    return "\n".join(lines)


def parse_ideas(raw: str, limit: int) -> List[Dict[str, Any]]:
    try:
        payload = json.loads(raw or "")
    except json.JSONDecodeError as exc:
        raise GenerationFailure(f"model returned non-JSON output: {exc}") from exc

    ideas = payload.get("ideas") if isinstance(payload, dict) else None
    if not isinstance(ideas, list):
        raise GenerationFailure("model output has no 'ideas' list")

    cleaned = [i for i in ideas if isinstance(i, dict) and str(i.get("title") or "").strip()]
    if not cleaned:
        raise GenerationFailure("model returned zero usable ideas")
    return cleaned[:limit]


class OpenAIIdeaGenerator(IdeaGenerator):
    def __init__(self, model: str = "gpt-4o-mini", client: Optional[OpenAI] = None) -> None:
        self.model = model
        self._client = client

    @property
    def client(self) -> OpenAI:
        # Lazy so a missing key only hurts when generation is actually attempted.
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise GenerationFailure("OPENAI_API_KEY is not set")
            self._client = OpenAI(api_key=api_key)
        return self._client

    def generate(self, user_id: str, count: int, preferences: ContentPreferences) -> GeneratedBatch:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(count, preferences)},
                ],
                response_format={"type": "json_object"},
                temperature=0.8,
            )
        except OpenAIError as exc:
            raise GenerationFailure(f"OpenAI call failed: {exc}") from exc

        ideas = parse_ideas(response.choices[0].message.content, count)
        if len(ideas) < count:
            logger.info("Generator returned %s/%s ideas for user %s", len(ideas), count, user_id)
        return GeneratedBatch(items=ideas, batch_id=uuid.uuid4().hex)
