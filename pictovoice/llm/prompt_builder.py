"""
pictovoice/llm/prompt_builder.py — Prompt construction for phrase generation.

Builds constrained chat prompts that instruct the model to produce exactly
one short, first-person sentence from the selected pictogram concepts.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_DEFAULT_CONTEXT: str = (
    "Context: A person with a disability uses an eye tracker to communicate "
    "with their gaze. They need to tell their caregiver something using the "
    "selected pictograms."
)


class ConceptList(BaseModel):
    """
    Pydantic-validated generation input.

    Ensures the concept list is non-empty and every entry is a non-empty
    string before a prompt is built.
    """

    concepts: List[str]
    context: Optional[str] = None

    @field_validator("concepts")
    @classmethod
    def must_be_non_empty(cls, v: List[str]) -> List[str]:
        """
        Validate and normalise the concept keys.

        Raises:
            ValueError: If the list is empty or contains blank entries.
        """
        if not v:
            raise ValueError("concepts required")
        cleaned = [c.strip() for c in v]
        if any(not c for c in cleaned):
            raise ValueError("concepts must not contain empty entries")
        return cleaned


class PromptBuilder:
    """
    Constructs chat prompts for the phrase model.

    Example: ``['self', 'water', 'help']`` →
    "Please, I need water and some help."
    """

    _SYSTEM_PROMPT: str = (
        "You are an assistant specialised in augmentative and alternative "
        "communication (AAC). You write clear, respectful sentences based on "
        "pictograms selected by people who communicate with assistive devices. "
        "Output exactly one short sentence and nothing else."
    )

    _USER_TEMPLATE: str = (
        "{context}\n\n"
        "Selected pictograms: {concepts}\n\n"
        "Write one short, clear, respectful sentence in English that expresses "
        "what the person wants to say. Reply with the sentence only:"
    )

    def build(self, request: ConceptList) -> str:
        """Return the user-turn prompt for *request*."""
        user_content = self._USER_TEMPLATE.format(
            context=request.context or _DEFAULT_CONTEXT,
            concepts=", ".join(request.concepts),
        )
        logger.debug("PromptBuilder: user content (%d chars)", len(user_content))
        return user_content

    def build_chat_messages(self, request: ConceptList) -> list[dict[str, str]]:
        """
        Build the prompt as chat messages for a tokenizer chat template.

        Returns:
            ``[{'role': 'system', ...}, {'role': 'user', ...}]``
        """
        return [
            {"role": "system", "content": self._SYSTEM_PROMPT},
            {"role": "user", "content": self.build(request)},
        ]

    def probe_messages(self) -> list[dict[str, str]]:
        """Minimal conversation used to confirm the model answers at all."""
        return [
            {"role": "system", "content": 'Reply with "OK" to confirm the connection.'},
            {"role": "user", "content": "Connection test"},
        ]
