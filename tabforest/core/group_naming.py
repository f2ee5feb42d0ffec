"""Default names for new groups, derived from the grouped tabs' titles."""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def _words(title: str) -> list[str]:
    return _WORD_RE.findall(title)


def common_title_word(titles: list[str]) -> str | None:
    """Longest word present in every title (case-insensitive).

    Ties go to the word appearing first in the first title. The word is
    returned with the casing it has in the first title.
    """
    if not titles:
        return None
    first = _words(titles[0])
    others = [{w.lower() for w in _words(t)} for t in titles[1:]]

    best: str | None = None
    for word in first:
        key = word.lower()
        if not all(key in words for words in others):
            continue
        if best is None or len(word) > len(best):
            best = word
    return best


def default_group_name(titles: list[str], fallback: str = "Group") -> str:
    return common_title_word(titles) or fallback
