"""Tests for per-request credential handling and redaction."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from starlette.datastructures import Headers

from relaychat.core.errors import MissingCredential
from relaychat.services.credentials import (
    REDACTED,
    CredentialSet,
    credentials_from_headers,
    header_name,
    redact,
    resolve,
)

PROVIDERS = ["openai", "gemini", "groq", "cohere", "cerebras"]


# =============================================================================
# Custom Strategies
# =============================================================================


def secret_value() -> st.SearchStrategy[str]:
    """Opaque credential strings that are long enough to be unambiguous."""
    return st.text(
        alphabet=st.characters(whitelist_categories=("L", "N"), max_codepoint=127),
        min_size=12,
        max_size=48,
    )


# =============================================================================
# CredentialSet
# =============================================================================


class TestCredentialSet:
    """Tests for the immutable credential bundle."""

    def test_blank_values_are_absent(self):
        creds = CredentialSet({"openai": "sk-abc", "gemini": "   ", "groq": None})

        assert "openai" in creds
        assert "gemini" not in creds
        assert "groq" not in creds
        assert len(creds) == 1

    def test_values_are_stripped(self):
        creds = CredentialSet({"openai": "  sk-abc  "})
        assert creds["openai"] == "sk-abc"

    def test_presence_reports_booleans_only(self):
        creds = CredentialSet({"openai": "sk-abcdefghijkl"})

        presence = creds.presence(PROVIDERS)

        assert presence == {
            "openai": True,
            "gemini": False,
            "groq": False,
            "cohere": False,
            "cerebras": False,
        }
        assert all(isinstance(v, bool) for v in presence.values())

    @given(secret=secret_value())
    @settings(max_examples=50)
    def test_repr_never_contains_secret(self, secret: str):
        creds = CredentialSet({"openai": secret})

        assert secret not in repr(creds)
        assert secret not in str(creds)
        assert REDACTED in repr(creds)


class TestCredentialsFromHeaders:
    def test_reads_provider_headers_case_insensitively(self):
        headers = Headers({"X-OpenAI-Key": "sk-abc", "x-groq-key": "gsk_abc"})

        creds = credentials_from_headers(headers, PROVIDERS)

        assert dict(creds) == {"openai": "sk-abc", "groq": "gsk_abc"}

    def test_header_name(self):
        assert header_name("cerebras") == "x-cerebras-key"

    def test_ignores_unknown_headers(self):
        creds = credentials_from_headers(Headers({"x-mistral-key": "abc"}), PROVIDERS)
        assert len(creds) == 0


class TestResolve:
    def test_returns_credential(self):
        assert resolve(CredentialSet({"gemini": "AIza-key"}), "gemini") == "AIza-key"

    @pytest.mark.parametrize("bundle", [{}, {"openai": ""}, {"openai": "   "}, {"gemini": "x"}])
    def test_missing_or_blank_raises(self, bundle):
        with pytest.raises(MissingCredential) as exc_info:
            resolve(bundle, "openai")

        assert exc_info.value.provider == "openai"
        assert exc_info.value.kind == "missing_credential"


# =============================================================================
# Redaction
# =============================================================================


class TestRedact:
    """Provider error text must not carry credentials out of the pipeline."""

    @given(secret=secret_value(), prefix=st.text(max_size=30), suffix=st.text(max_size=30))
    @settings(max_examples=100)
    def test_known_secret_is_removed(self, secret: str, prefix: str, suffix: str):
        text = f"{prefix}{secret}{suffix}"
        assert secret not in redact(text, [secret])

    @pytest.mark.parametrize(
        "leak",
        [
            "Incorrect API key provided: sk-proj-abcdefghijklmnop",
            "key=AIzaSyA1234567890abcdefghijklmno rejected",
            "groq said gsk_abcdefghijklmnop is invalid",
            "cerebras: csk-abcdefghijklmnop",
            "Authorization: Bearer abc.def.ghi",
        ],
    )
    def test_key_shaped_strings_are_removed(self, leak: str):
        redacted = redact(leak)

        assert REDACTED in redacted
        for token in ("sk-proj-abcdefghijklmnop", "AIzaSyA1234567890", "gsk_abcdefghijklmnop",
                      "csk-abcdefghijklmnop", "abc.def.ghi"):
            assert token not in redacted

    def test_longer_secret_masked_before_its_prefix(self):
        redacted = redact("token abcdef123456XYZ end", ["abcdef123456", "abcdef123456XYZ"])
        assert redacted == f"token {REDACTED} end"

    def test_plain_text_untouched(self):
        assert redact("rate limit exceeded", ["sk-not-here-at-all"]) == "rate limit exceeded"
