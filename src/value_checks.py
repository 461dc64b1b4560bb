from typing import Iterable, List, Optional, Sequence
import math
import re

_PLACEHOLDER_REGEX = re.compile(r'\{([A-Za-z_][A-Za-z0-9_]*)\}')
_DOTTED_IDENTIFIER = re.compile(r'^[A-Za-z0-9_]+(\.[A-Za-z0-9_\-]+)+$')
_UNBRACED_VALUE_TOKEN = re.compile(r'\b[Vv]alue\d+\b')
_COMMON_PLACEHOLDER_WORDS = re.compile(r'\b(Count|Total|Name|Value|Item|User|Email|Date|Time|Status|Type|Id)\b')
_ADJACENT_CAPITALIZED = re.compile(r'[A-Z][a-z]+\s+[A-Z][a-z]+')
_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

# Key segments for which a long value is implausible
LABEL_SEGMENTS = ('label', 'button', 'title', 'heading', 'placeholder')
LABEL_MAX_WORDS = 10
MAX_CANDIDATE_LENGTH = 160


def extract_placeholders(value: str) -> List[str]:
    """Unique ``{name}`` placeholder names in order of first appearance."""
    names = []
    for name in _PLACEHOLDER_REGEX.findall(value or ''):
        if name not in names:
            names.append(name)
    return names


def is_key_like(text: str) -> bool:
    """A dot with no whitespace reads as a key or property path, not as text."""
    return '.' in text and not re.search(r'\s', text)


def has_suspicious_placeholder_pattern(value: str) -> bool:
    """
    Detects values that were produced by a broken extraction.

    Two shapes are flagged: ``value1``/``Value2`` tokens outside braces
    ("Total value1 items"), and a common placeholder word next to adjacent
    Capitalized words ("Total Count Items"), which indicates a mangled label.
    """
    without_placeholders = _PLACEHOLDER_REGEX.sub('', value)
    if _UNBRACED_VALUE_TOKEN.search(without_placeholders):
        return True
    if _COMMON_PLACEHOLDER_WORDS.search(value) and _ADJACENT_CAPITALIZED.search(value):
        return True
    return False


def _is_label_key(key: str) -> bool:
    wrapped = f'.{key.lower()}.'
    return any(f'.{segment}.' in wrapped for segment in LABEL_SEGMENTS)


def is_suspicious_value(key: str, value, option_names: Optional[Iterable[str]] = None) -> bool:
    """
    Sanity check for a resolved value before it is trusted.

    Args:
        key: The translation key the value was resolved for.
        value: The resolved value; anything other than a non-blank string is suspicious.
        option_names: Option names passed at the key's call site. When given, every
            ``{placeholder}`` in the value must be one of them. When None, placeholders
            are not checked.

    Returns:
        True if the value equals its key, is a bare dotted identifier, is implausibly long
        for a label/button/title-ish key, or has placeholders the call site does not pass.
    """
    if not isinstance(value, str):
        return True
    trimmed = value.strip()
    if not trimmed:
        return True
    if trimmed == key:
        return True
    if _DOTTED_IDENTIFIER.match(trimmed):
        return True
    if _is_label_key(key) and len(trimmed.split()) >= LABEL_MAX_WORDS:
        return True

    if option_names is not None:
        known = {name.lower() for name in option_names}
        for placeholder in extract_placeholders(trimmed):
            if placeholder.lower() not in known:
                return True

    return False


def has_signal(text: str, hint_words: Sequence[str], placeholder_hints: Sequence[str]) -> bool:
    lower = text.lower()
    return any(h in lower for h in hint_words) or any(p in lower for p in placeholder_hints)


def meets_hint_threshold(text: str, hint_words: Sequence[str], placeholder_hints: Sequence[str]) -> bool:
    """
    Requires ceil(60%) of the hint words when there are three or more, otherwise one.

    One hint word less is tolerated when the text carries placeholders (matching the
    call site's option names or not) and the key has at least two hint words.
    """
    lower = text.lower()
    hint_matches = sum(1 for h in hint_words if h in lower)
    placeholder_matches = sum(1 for p in placeholder_hints if p in lower)
    any_placeholders = len(_PLACEHOLDER_REGEX.findall(text))

    target = math.ceil(len(hint_words) * 0.6) if len(hint_words) >= 3 else 1
    if hint_matches >= target:
        return True
    return (hint_matches >= target - 1
            and (placeholder_matches > 0 or any_placeholders > 0)
            and len(hint_words) >= 2)


def is_acceptable_candidate(text: str, hint_words: Sequence[str], placeholder_hints: Sequence[str] = ()) -> bool:
    """Independent gate applied to diff-derived and snapshot-derived candidates."""
    trimmed = text.strip()
    if not trimmed or len(trimmed) > MAX_CANDIDATE_LENGTH:
        return False
    if '\n' in trimmed:
        return False
    if is_key_like(trimmed):
        return False
    if not (re.search(r'\s', trimmed) or re.search(r'\{[A-Za-z_]', trimmed)):
        return False
    if not has_signal(trimmed, hint_words, placeholder_hints):
        return False
    return meets_hint_threshold(trimmed, hint_words, placeholder_hints)


def build_translation_call_pattern(key: str, with_options: bool = False) -> re.Pattern:
    """
    Regex for a translation call of ``key``: ``t('key'``, ``t("key"``, ``$t('key'`` ...

    With ``with_options`` the pattern also captures the body of an inline options
    object, as in ``t('key', { count: n })``.
    """
    pattern = r'(?<![\w$])\$?t\(\s*[\'"]' + re.escape(key) + r'[\'"]'
    if with_options:
        pattern += r'\s*,\s*\{([^}]+)\}'
    return re.compile(pattern)


def contains_translation_call(content: str, key: str) -> bool:
    return bool(build_translation_call_pattern(key).search(content))


def extract_call_option_names(content: str, key: str) -> List[str]:
    """
    Lowercase option names passed alongside ``key`` at its call sites in ``content``.

    ``t('cart.total', { count: n, total })`` yields ["count", "n", "total"]; every
    identifier-shaped token of the options object is kept.
    """
    names = []
    for match in build_translation_call_pattern(key, with_options=True).finditer(content):
        for token in re.split(r'[:,]', match.group(1)):
            token = token.strip()
            if _IDENTIFIER.match(token) and token.lower() not in names:
                names.append(token.lower())
    return names
