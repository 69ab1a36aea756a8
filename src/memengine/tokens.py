"""Token estimation shared by compression, storage and budgeting.

The engine never calls a tokenizer. A token is approximated as four
characters of text, which keeps budgets deterministic and lets truncation
hit an exact token target by cutting at ``target * CHARS_PER_TOKEN``.
"""

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text (ceil of chars / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text so that estimate_tokens(result) <= max_tokens."""
    if max_tokens <= 0:
        return ""
    return text[: max_tokens * CHARS_PER_TOKEN]
