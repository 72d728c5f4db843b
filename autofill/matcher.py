"""
Fuzzy option matching.

Picks the option of a select element or radio group that best matches a
target value. Used when assigning select values, when repairing values
returned by the AI service, and by the heuristic mapper's dropdown rules.

Precedence:
1. exact (case-insensitive) match on value or text
2. substring containment in either direction, first option in list order
3. token overlap score, best option wins if its score exceeds MIN_TOKEN_SCORE
"""

from typing import Any, Iterable, List, Optional

from .models import FieldOption

MIN_TOKEN_LENGTH = 3
MIN_TOKEN_SCORE = 3


def _token_score(search: str, option_text: str) -> int:
    score = 0
    for word in search.split():
        if len(word) >= MIN_TOKEN_LENGTH and word in option_text:
            score += len(word)
    for word in option_text.split():
        if len(word) >= MIN_TOKEN_LENGTH and word in search:
            score += len(word)
    return score


def match_option(target: Any, options: Iterable[Any]) -> Optional[FieldOption]:
    """
    Find the option matching target.

    Args:
        target: Value to look for (converted to text)
        options: FieldOption objects, option dicts or plain strings

    Returns:
        The matching option, or None
    """
    if target is None:
        return None
    search = str(target).strip().lower()
    opts: List[FieldOption] = [FieldOption.coerce(o) for o in options]
    if not search or not opts:
        return None

    # 1. Exact
    for opt in opts:
        if opt.value.lower() == search or opt.text.lower() == search:
            return opt

    # 2. Containment (empty sides never match)
    for opt in opts:
        for candidate in (opt.value.lower(), opt.text.lower()):
            if candidate and (search in candidate or candidate in search):
                return opt

    # 3. Token overlap
    best_match = None
    best_score = 0
    for opt in opts:
        score = _token_score(search, opt.text.lower())
        if score > best_score:
            best_score = score
            best_match = opt

    return best_match if best_score > MIN_TOKEN_SCORE else None


def match_option_value(target: Any, options: Iterable[Any]) -> Optional[str]:
    """Same as match_option, returning the option's value."""
    opt = match_option(target, options)
    return opt.value if opt else None


def exact_option(value: Any, options: Iterable[Any]) -> Optional[FieldOption]:
    """Option whose value equals value, else whose text equals it case-insensitively."""
    text = "" if value is None else str(value)
    opts = [FieldOption.coerce(o) for o in options]
    for opt in opts:
        if opt.value == text:
            return opt
    for opt in opts:
        if opt.text.lower() == text.lower():
            return opt
    return None


def option_exists(value: Any, options: Iterable[Any]) -> bool:
    """True when value is literally one of the option values or texts."""
    return exact_option(value, options) is not None
