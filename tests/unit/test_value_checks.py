import pytest

from src.value_checks import (
    build_translation_call_pattern,
    contains_translation_call,
    extract_call_option_names,
    extract_placeholders,
    has_signal,
    has_suspicious_placeholder_pattern,
    is_acceptable_candidate,
    is_key_like,
    is_suspicious_value,
    meets_hint_threshold,
)

KEY = "auth.errors.invalid_credentials"
HINTS = ["invalid", "credentials"]


class TestSuspiciousValues:

    def test_value_equal_to_key_is_always_rejected(self):
        assert is_suspicious_value(KEY, KEY)
        assert is_suspicious_value(KEY, KEY, option_names=[])

    @pytest.mark.parametrize("value", [None, "", "   ", 42])
    def test_non_text_values(self, value):
        assert is_suspicious_value(KEY, value)

    def test_dotted_identifier(self):
        assert is_suspicious_value("common.greeting", "some.other_key")

    def test_long_value_for_label_key(self):
        long_value = "This title is far too long to be a title of anything"
        assert is_suspicious_value("profile.title", long_value)
        assert not is_suspicious_value("profile.intro", long_value)

    def test_plain_label(self):
        assert not is_suspicious_value("settings.save.button", "Save")

    def test_placeholders_checked_against_option_names(self):
        assert is_suspicious_value("greeting.hello", "Hello {name}", ["user"])
        assert not is_suspicious_value("greeting.hello", "Hello {name}", ["Name"])
        # Without call-site knowledge placeholders are not checked
        assert not is_suspicious_value("greeting.hello", "Hello {name}")

    def test_badly_extracted_patterns(self):
        assert has_suspicious_placeholder_pattern("Total value1 items")
        assert has_suspicious_placeholder_pattern("Total Count Items")
        assert not has_suspicious_placeholder_pattern("Hello {value1}")
        assert not has_suspicious_placeholder_pattern("Welcome back, Jane")


class TestCandidateGates:

    def test_extract_placeholders_unique_in_order(self):
        assert extract_placeholders("Hello {name}, you have {count} {name}") == ["name", "count"]

    def test_key_like(self):
        assert is_key_like("auth.login")
        assert not is_key_like("Log in.")

    def test_has_signal(self):
        assert has_signal("Invalid login", HINTS, [])
        assert has_signal("You have {count}", [], ["count"])
        assert not has_signal("Something else", HINTS, [])

    def test_hint_threshold(self):
        hints = ["reset", "password", "email"]
        assert meets_hint_threshold("Reset your password", hints, [])
        assert not meets_hint_threshold("Reset link", hints, [])
        # One hint short is tolerated when the text carries a placeholder
        assert meets_hint_threshold("Reset link for {address}", hints, [])

    def test_acceptable_candidate(self):
        assert is_acceptable_candidate("Invalid credentials, please try again.", HINTS)
        assert not is_acceptable_candidate("Invalid", HINTS)
        assert not is_acceptable_candidate("invalid " * 30, HINTS)
        assert not is_acceptable_candidate("auth.invalid", HINTS)
        assert not is_acceptable_candidate("Invalid\ncredentials", HINTS)
        assert not is_acceptable_candidate("Please try again", HINTS)


class TestTranslationCalls:

    @pytest.mark.parametrize("source", [
        "t('a.b')",
        '$t("a.b")',
        "i18n.t( 'a.b' )",
        "{t('a.b', { count })}",
    ])
    def test_call_pattern_matches(self, source):
        assert build_translation_call_pattern("a.b").search(source)

    @pytest.mark.parametrize("source", [
        "format('a.b')",
        "t('a.bc')",
        "t('axb')",
    ])
    def test_call_pattern_rejects(self, source):
        assert not build_translation_call_pattern("a.b").search(source)

    def test_contains_translation_call(self):
        assert contains_translation_call("const label = t('nav.home');", "nav.home")
        assert not contains_translation_call("const key = 'nav.home';", "nav.home")

    def test_extract_call_option_names(self):
        content = "t('cart.total', { count: n, total })\nt('cart.total', { Count: 1 })"
        assert extract_call_option_names(content, "cart.total") == ["count", "n", "total"]
        assert extract_call_option_names("t('cart.total')", "cart.total") == []
