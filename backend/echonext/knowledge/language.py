"""Language-specific text policies.

Each supported language maps to a frozen policy record. Callers look up
the policy once instead of branching on the language code.
"""

import re
from dataclasses import dataclass

from echonext.knowledge.models import Language


@dataclass(frozen=True)
class LanguagePolicy:
    """Text handling rules for one language."""

    language: Language
    sentence_pattern: re.Pattern[str]
    min_interim_length: int
    trailing_punctuation: str
    first_token_only: bool

    def split_sentences(self, text: str) -> list[str]:
        """Split text on sentence terminators, dropping blank units."""
        return [s.strip() for s in self.sentence_pattern.split(text) if s.strip()]

    def extract_word(self, response: str) -> str:
        """Reduce a raw completion to the predicted word."""
        response = response.strip()
        if self.first_token_only:
            parts = response.split()
            return parts[0].strip() if parts else ""
        return response.rstrip(self.trailing_punctuation).strip()


_TRAILING_PUNCTUATION = "。、.,!?;:\"'「」『』（）()[]"

LANGUAGE_POLICIES: dict[Language, LanguagePolicy] = {
    Language.JA: LanguagePolicy(
        language=Language.JA,
        sentence_pattern=re.compile(r"[。！？\n]+"),
        min_interim_length=2,
        trailing_punctuation=_TRAILING_PUNCTUATION,
        first_token_only=True,
    ),
    Language.EN: LanguagePolicy(
        language=Language.EN,
        sentence_pattern=re.compile(r"[.!?\n]+"),
        min_interim_length=3,
        trailing_punctuation=_TRAILING_PUNCTUATION,
        first_token_only=False,
    ),
}


def get_language_policy(language: Language | str) -> LanguagePolicy:
    """Return the policy for a language; anything but Japanese uses English rules."""
    if language == Language.JA or language == "ja":
        return LANGUAGE_POLICIES[Language.JA]
    return LANGUAGE_POLICIES[Language.EN]
