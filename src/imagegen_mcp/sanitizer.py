from __future__ import annotations

import re
from collections.abc import Iterable

from .tools.errors import InvalidPromptError

DEFAULT_MAX_PROMPT_LENGTH = 32000

# C0/C1 control characters except tab and newline.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_NEWLINE_RE = re.compile(r"\r\n?")


def sanitize_prompt(
    text: object,
    *,
    max_length: int = DEFAULT_MAX_PROMPT_LENGTH,
    blocked_terms: Iterable[str] = (),
) -> str:
    """Return the normalized prompt or raise :class:`InvalidPromptError`.

    Normalization only drops control characters, unifies line endings and
    trims surrounding whitespace; the wording is never changed, so applying
    it twice gives the same result.
    """
    if not isinstance(text, str):
        raise InvalidPromptError("Prompt must be a string")
    cleaned = _NEWLINE_RE.sub("\n", text)
    cleaned = _CONTROL_RE.sub("", cleaned).strip()
    if not cleaned:
        raise InvalidPromptError("Prompt cannot be empty")
    if len(cleaned) > max_length:
        raise InvalidPromptError(
            f"Prompt is too long ({len(cleaned)} characters, maximum is {max_length})"
        )
    blocked = _blocked_term(cleaned, blocked_terms)
    if blocked is not None:
        raise InvalidPromptError(f"Prompt contains a blocked term: {blocked!r}")
    return cleaned


def _blocked_term(text: str, terms: Iterable[str]) -> str | None:
    for term in terms:
        term = term.strip()
        if not term:
            continue
        if re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text, re.IGNORECASE):
            return term
    return None
