from typing import Callable, Iterable, List, Optional, Sequence, Tuple
import re
from dataclasses import dataclass

# Words that suggest a string is shown to a user
COMMON_UI_WORDS = (
    'please', 'click', 'tap', 'select', 'enter', 'submit', 'cancel', 'save',
    'delete', 'edit', 'view', 'loading', 'error', 'success', 'warning',
)

# Functions whose first string argument is user-facing text
UI_CALL_SITES = (
    'showMessage', 'showError', 'showSuccess', 'toast', 'alert', 'confirm',
    'notify', 'setError', 'setMessage', 'setTitle',
)

# Element attributes that carry user-facing text
UI_PROPS = (
    'title', 'placeholder', 'alt', 'label', 'message', 'description', 'header',
    'tooltip', 'aria-label', 'aria-description', 'buttonText', 'submitText',
    'cancelText', 'confirmText', 'errorText', 'helperText',
)

# Object-literal property names that usually hold labels
OBJECT_PROPERTIES = (
    'text', 'label', 'title', 'message', 'description', 'placeholder', 'content',
    'header', 'tooltip', 'buttonText', 'errorMessage', 'successMessage',
)

# Extraction bonuses by source
CALL_ARGUMENT_BONUS = 6
UI_PROP_BONUS = 5
OBJECT_PROPERTY_BONUS = 4
TEMPLATE_LITERAL_BONUS = 4
VUE_INTERPOLATION_BONUS = 4
JSX_TEXT_BONUS = 2
STRING_LITERAL_BONUS = 0

_UI_WORD_PATTERN = re.compile(r'\b(' + '|'.join(COMMON_UI_WORDS) + r')\b', re.IGNORECASE)
_LETTER_PATTERN = re.compile(r'[^\W\d_]')
_PLACEHOLDER_PATTERN = re.compile(r'\{[A-Za-z_][A-Za-z0-9_]*\}')

_BREAKPOINT_PREFIX = re.compile(r'^(sm|md|lg|xl|2xl|hover|focus|active|disabled|dark|group-hover):\S+$')
_UTILITY_PREFIX = re.compile(
    r'^-?(bg|text|border|p|px|py|pt|pb|pl|pr|m|mx|my|mt|mb|ml|mr|w|h|min-w|min-h|max-w|max-h|'
    r'flex|grid|gap|space|rounded|shadow|font|leading|tracking|items|justify|self|content|'
    r'overflow|z|opacity|transition|duration|ease|col|row|inset|top|bottom|left|right|cursor|'
    r'ring|outline|divide|object|order|translate|scale|rotate)(-[\w./\[\]#%]+)+$'
)
_HYPHENATED_TOKEN = re.compile(r'^[a-z][a-z0-9]*(-[a-z0-9]+)+$')
_SINGLE_UTILITIES = frozenset((
    'flex', 'grid', 'block', 'inline', 'hidden', 'absolute', 'relative', 'fixed',
    'sticky', 'container', 'truncate', 'underline', 'italic', 'uppercase',
    'lowercase', 'capitalize', 'rounded', 'shadow', 'border', 'grow', 'shrink',
))

_CODE_PATTERNS = (
    re.compile(r'^(https?:|mailto:|tel:|//|www\.)'),
    re.compile(r'^(@/|\.\.?/|~/|/)'),
    re.compile(r'\.(ts|tsx|js|jsx|vue|json|css|scss|html|php|svg|png|jpe?g|gif)$', re.IGNORECASE),
    re.compile(r'^\$\{.*\}$'),
    re.compile(r'^\{\{.*\}\}$'),
    re.compile(r'^\{[A-Za-z_][A-Za-z0-9_]*\}$'),
    re.compile(r'^on[A-Z][A-Za-z]*$'),
    re.compile(r'^#[0-9a-fA-F]{3,8}$'),
    re.compile(r'^-?\d+(\.\d+)?(px|em|rem|%|vh|vw|ms|s)?$'),
    re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*:$'),
    re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*(\.[A-Za-z_$][A-Za-z0-9_$\-]*)+$'),
    re.compile(r'^(import|export|const|let|var|function|return)\s'),
    re.compile(r'=>'),
)
_BARE_IDENTIFIER = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')
_IDENTIFIER_MARKERS = re.compile(r'[_$\d]|[a-z][A-Z]')

_CLASS_OR_STYLE_LINE = re.compile(r'className\s*=|class\s*=|style\s*=|styles[.\[]|classes[.\[]')
_QUOTED_STRING = re.compile(r'"((?:[^"\\\n]|\\.)*)"|\'((?:[^\'\\\n]|\\.)*)\'')
_TEMPLATE_LITERAL = re.compile(r'`([^`]*)`')
_INTERPOLATION = re.compile(r'\$\{[^}]*\}')
_JSX_TEXT = re.compile(r'>([^<>{}]+)<')
_VUE_INTERPOLATION = re.compile(r'\{\{\s*[\'"]([^\'"{}]+)[\'"]\s*\}\}')
_UI_PROP_ASSIGNMENT = re.compile(
    r'(?<![\w:-])(?:' + '|'.join(re.escape(p) for p in UI_PROPS) + r')\s*=\s*(["\'])((?:(?!\1).)+)\1',
    re.IGNORECASE
)
_OBJECT_PROPERTY = re.compile(
    r'\b(?:' + '|'.join(OBJECT_PROPERTIES) + r')\s*:\s*(["\'])((?:(?!\1).)+)\1',
    re.IGNORECASE
)
_UI_CALL_ARGUMENT = re.compile(
    r'\b(?:' + '|'.join(UI_CALL_SITES) + r')(?:\.\w+)?\s*\(\s*(["\'])((?:(?!\1).)+)\1',
    re.IGNORECASE
)


@dataclass
class Candidate:
    text: str
    score: int


@dataclass(frozen=True)
class Verdict:
    """Outcome of one user-text rule: ``rule`` names the rule that decided."""
    rule: str
    accepted: bool


def compute_edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings, using a single DP row."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    row = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        previous_diagonal = row[0]
        row[0] = i
        for j in range(1, len(b) + 1):
            above = row[j]
            if a[i - 1] == b[j - 1]:
                row[j] = previous_diagonal
            else:
                row[j] = min(row[j - 1] + 1, above + 1, previous_diagonal + 1)
            previous_diagonal = above
    return row[len(b)]


def _split_words(segment: str) -> List[str]:
    spaced = re.sub(r'([a-z0-9])([A-Z])', r'\1 \2', segment)
    spaced = re.sub(r'[_\-]+', ' ', spaced)
    return spaced.split()


def build_label_from_key_segment(segment: str) -> str:
    """
    Builds a human-readable fallback label from a key segment.

    "user_profile" -> "User profile", "resetPassword" -> "Reset password".
    """
    words = [w.lower() for w in _split_words(segment or '')]
    if not words:
        return ''
    words[0] = words[0][:1].upper() + words[0][1:]
    return ' '.join(words)


def extract_hint_words(key: str) -> List[str]:
    """
    Derives lowercase hint words from the last segment of a translation key.

    The segment is split on camelCase boundaries, underscores and hyphens; only
    tokens longer than two characters are kept, first occurrence wins.

    Args:
        key: A dot-delimited translation key, e.g. "auth.errors.invalidCredentials".

    Returns:
        Ordered hint words, e.g. ["invalid", "credentials"].
    """
    segments = [s for s in key.split('.') if s]
    if not segments:
        return []
    hints = []
    for word in _split_words(segments[-1]):
        word = word.lower()
        if len(word) > 2 and word not in hints:
            hints.append(word)
    return hints


def get_key_path_variations(key: str) -> List[str]:
    """
    Alternate dot-paths under which the same logical string may be stored.

    Order: the full key, minus its first segment, minus its first two segments,
    the last segment alone, the last two segments. Duplicates are dropped.
    """
    segments = [s for s in key.split('.') if s]
    if not segments:
        return []
    variations = ['.'.join(segments)]
    if len(segments) > 1:
        variations.append('.'.join(segments[1:]))
        if len(segments) > 2:
            variations.append('.'.join(segments[2:]))
        variations.append(segments[-1])
        variations.append('.'.join(segments[-2:]))

    unique = []
    for variation in variations:
        if variation not in unique:
            unique.append(variation)
    return unique


def _is_css_token(token: str) -> bool:
    return bool(
        _BREAKPOINT_PREFIX.match(token)
        or _UTILITY_PREFIX.match(token)
        or _HYPHENATED_TOKEN.match(token)
        or token in _SINGLE_UTILITIES
    )


def is_css_class_like(text: str) -> bool:
    """True for strings that read like a list of CSS utility classes ("px-4 py-2 rounded")."""
    tokens = text.split()
    if not tokens:
        return False
    css_tokens = [t for t in tokens if _is_css_token(t)]
    if len(tokens) == 1:
        return bool(css_tokens)
    has_utility_marker = any('-' in t or ':' in t for t in css_tokens)
    return has_utility_marker and len(css_tokens) / len(tokens) > 0.5


def is_bare_identifier(text: str) -> bool:
    """snake_case, camelCase, CONSTANT_CASE or $-prefixed tokens; plain words like "Save" are not identifiers."""
    return bool(_BARE_IDENTIFIER.match(text) and _IDENTIFIER_MARKERS.search(text))


def is_code_pattern_like(text: str) -> bool:
    """True for URLs, paths, file names, bare placeholders, handler names, colors, numbers and similar."""
    if is_bare_identifier(text):
        return True
    return any(pattern.search(text) for pattern in _CODE_PATTERNS)


def _rule_too_short(text: str) -> Optional[Verdict]:
    if len(text) < 2:
        return Verdict('too-short', False)
    return None


def _rule_no_letters(text: str) -> Optional[Verdict]:
    if not _LETTER_PATTERN.search(text):
        return Verdict('no-letters', False)
    return None


def _rule_css(text: str) -> Optional[Verdict]:
    if is_css_class_like(text):
        return Verdict('css-class', False)
    return None


def _rule_code(text: str) -> Optional[Verdict]:
    if is_code_pattern_like(text):
        return Verdict('code-pattern', False)
    return None


def _rule_multi_word(text: str) -> Optional[Verdict]:
    if len(text.split()) >= 2:
        return Verdict('multi-word', True)
    return None


def _rule_single_word_signal(text: str) -> Optional[Verdict]:
    if (re.match(r'^[A-Z]', text)
            or re.search(r'[.!?:]$', text)
            or _UI_WORD_PATTERN.search(text)
            or _PLACEHOLDER_PATTERN.search(text)
            or re.match(r'^[A-Z][a-z]+,\s*[a-z]+', text)):
        return Verdict('single-word-signal', True)
    return None


# Evaluated in order; the first rule with an opinion decides.
USER_TEXT_RULES: Tuple[Callable[[str], Optional[Verdict]], ...] = (
    _rule_too_short,
    _rule_no_letters,
    _rule_css,
    _rule_code,
    _rule_multi_word,
    _rule_single_word_signal,
)


def classify_user_text(text: str) -> Verdict:
    """Folds ``USER_TEXT_RULES`` over the trimmed text and returns the deciding verdict."""
    trimmed = text.strip()
    for rule in USER_TEXT_RULES:
        verdict = rule(trimmed)
        if verdict is not None:
            return verdict
    return Verdict('no-signal', False)


def is_user_text_like(text: str) -> bool:
    return classify_user_text(text).accepted


def score_candidate(
        text: str,
        hint_words: Sequence[str],
        placeholder_hints: Sequence[str] = (),
        source_bonus: int = 0
) -> int:
    """
    Additive relevance score of a candidate string.

    Args:
        text: The candidate, already trimmed.
        hint_words: Lowercase words from the key's last segment; +10 for each one contained.
        placeholder_hints: Lowercase option names from the call site; +3 for each one contained.
        source_bonus: Bonus for where the string was found (call argument, UI prop, ...).

    Returns:
        The score. Shape bonuses: capital start +2, terminal punctuation +2, a space +1,
        three or more words +2, length in [5, 150] +2, UI vocabulary +3; looking like a
        call expression or bare identifier costs 5.
    """
    lower = text.lower()
    score = 10 * sum(1 for hint in hint_words if hint and hint in lower)
    score += 3 * sum(1 for hint in placeholder_hints if hint and hint in lower)

    if re.match(r'^[A-Z]', text):
        score += 2
    if re.search(r'[.!?]$', text):
        score += 2
    if ' ' in text:
        score += 1
    if len(text.split()) >= 3:
        score += 2
    if 5 <= len(text) <= 150:
        score += 2
    if _UI_WORD_PATTERN.search(text):
        score += 3
    if re.match(r'^\w+\(', text) or re.match(r'^[a-z][a-zA-Z0-9]*$', text):
        score -= 5

    return score + source_bonus


def normalize_template_literal(body: str) -> Optional[str]:
    """
    Replaces ``${expr}`` interpolations with sequential ``{value1}``, ``{value2}``, ...

    Returns None when nothing alphabetic is left once the placeholders are removed.
    """
    counter = 0

    def _replace(_match):
        nonlocal counter
        counter += 1
        return f'{{value{counter}}}'

    normalized = _INTERPOLATION.sub(_replace, body)
    if not _LETTER_PATTERN.search(re.sub(r'\{value\d+\}', '', normalized)):
        return None
    return normalized


def _unescape(text: str) -> str:
    return text.replace('\\"', '"').replace("\\'", "'").replace('\\n', ' ')


def _call_arguments(content: str) -> Iterable[str]:
    for match in _UI_CALL_ARGUMENT.finditer(content):
        yield match.group(2)


def _ui_props(content: str) -> Iterable[str]:
    for match in _UI_PROP_ASSIGNMENT.finditer(content):
        yield match.group(2)


def _object_properties(content: str) -> Iterable[str]:
    for match in _OBJECT_PROPERTY.finditer(content):
        yield match.group(2)


def _template_literals(content: str) -> Iterable[str]:
    for match in _TEMPLATE_LITERAL.finditer(content):
        normalized = normalize_template_literal(match.group(1))
        if normalized is not None:
            yield normalized


def _vue_interpolations(content: str) -> Iterable[str]:
    for match in _VUE_INTERPOLATION.finditer(content):
        yield match.group(1)


def _jsx_text(content: str) -> Iterable[str]:
    for match in _JSX_TEXT.finditer(content):
        yield ' '.join(match.group(1).split())


def _string_literals(content: str) -> Iterable[str]:
    for line in content.split('\n'):
        if _CLASS_OR_STYLE_LINE.search(line):
            continue
        for match in _QUOTED_STRING.finditer(line):
            body = match.group(1) if match.group(1) is not None else match.group(2)
            if len(body) >= 3:
                yield _unescape(body)


# Highest bonus first so that de-duplication keeps the strongest context.
EXTRACTORS = (
    (_call_arguments, CALL_ARGUMENT_BONUS),
    (_ui_props, UI_PROP_BONUS),
    (_object_properties, OBJECT_PROPERTY_BONUS),
    (_template_literals, TEMPLATE_LITERAL_BONUS),
    (_vue_interpolations, VUE_INTERPOLATION_BONUS),
    (_jsx_text, JSX_TEXT_BONUS),
    (_string_literals, STRING_LITERAL_BONUS),
)


def extract_candidates(
        content: str,
        hint_words: Sequence[str],
        placeholder_hints: Sequence[str] = ()
) -> List[Candidate]:
    """
    Extracts plausible user-facing strings from a blob of source text and ranks them.

    Every extractor in ``EXTRACTORS`` is applied; a text already produced by an earlier
    extractor is not added again. Strings that do not look like user text are dropped.

    Args:
        content: One source line, joined diff lines, or a whole file.
        hint_words: Lowercase hint words for the key being recovered.
        placeholder_hints: Lowercase option names passed at the key's call site.

    Returns:
        Candidates sorted by score, highest first; equal scores keep extraction order.
    """
    if not content:
        return []
    candidates = []
    seen = set()
    for extractor, bonus in EXTRACTORS:
        for raw in extractor(content):
            text = raw.strip()
            if not text or text in seen:
                continue
            if not is_user_text_like(text):
                continue
            seen.add(text)
            candidates.append(Candidate(text, score_candidate(text, hint_words, placeholder_hints, bonus)))
    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates


def extract_string_from_line(line: str, key: str) -> Optional[str]:
    """
    Picks the hardcoded string most likely replaced by ``key`` in one line of source code.

    Returns the best candidate when it scores at least 3, or when it is the only
    candidate on the line; otherwise None. Class and style assignment lines yield None.
    """
    if _CLASS_OR_STYLE_LINE.search(line):
        return None
    candidates = extract_candidates(line, extract_hint_words(key))
    if not candidates:
        return None
    best = max(candidates, key=lambda c: (c.score, len(c.text)))
    if best.score >= 3 or len(candidates) == 1:
        return best.text
    return None
