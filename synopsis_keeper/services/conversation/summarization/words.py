"""Language-agnostic word counting for trigger thresholds."""

from __future__ import annotations

import math
import re
from typing import Iterable, List

from ....logging_config import logger
from .state import Turn

# Apostrophes and hyphens join word pieces ("don't", "well-known").
_WORD_PATTERN = re.compile(r"[^\W_]+(?:['\u2019\-][^\W_]+)*", re.UNICODE)
# CJK ideographs and kana count one word per character.
_CJK_PATTERN = re.compile("[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")


def extract_all_words(text: str) -> List[str]:
    words: List[str] = []
    for match in _WORD_PATTERN.finditer(text or ""):
        token = match.group(0)
        if _CJK_PATTERN.search(token):
            words.extend(_split_cjk(token))
        else:
            words.append(token)
    return words


def _split_cjk(token: str) -> List[str]:
    pieces: List[str] = []
    buffer = ""
    for char in token:
        if _CJK_PATTERN.match(char):
            if buffer:
                pieces.append(buffer)
                buffer = ""
            pieces.append(char)
        else:
            buffer += char
    if buffer:
        pieces.append(buffer)
    return pieces


def count_words(text: str) -> int:
    """Word count with a character-based fallback that never raises."""
    try:
        return len(extract_all_words(text))
    except Exception as exc:  # pragma: no cover - defensive
        logger.debug("word extraction failed; using length estimate", extra={"error": str(exc)})
        return math.ceil(len(text or "") / 5)


def words_in_turns(turns: Iterable[Turn]) -> int:
    return sum(count_words(turn.text) for turn in turns if not turn.is_system and turn.text)


__all__ = ["count_words", "extract_all_words", "words_in_turns"]
