"""Language tagging for extracted document text."""
from __future__ import annotations

import logging
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect_langs

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0


class LanguageDetector:
    """Tags a document with its dominant language, or ``None`` when unsure.

    Only the first ``sample_chars`` characters are inspected. Samples with
    fewer than ``min_chars`` letters, or whose best guess scores below
    ``min_probability``, are left untagged rather than guessed.
    """

    def __init__(self, sample_chars: int = 5000, min_chars: int = 20, min_probability: float = 0.7) -> None:
        self.sample_chars = sample_chars
        self.min_chars = min_chars
        self.min_probability = min_probability

    def detect(self, text: str) -> Optional[str]:
        sample = text.strip()[: self.sample_chars]
        if sum(char.isalpha() for char in sample) < self.min_chars:
            return None
        try:
            candidates = detect_langs(sample)
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return None
        if not candidates or candidates[0].prob < self.min_probability:
            LOGGER.debug("No confident language guess: %s", candidates)
            return None
        LOGGER.debug("Detected language: %s (%.2f)", candidates[0].lang, candidates[0].prob)
        return candidates[0].lang
