"""Tests for redaction of sensitive audit data."""

import pytest

from agentic_guard.audit import REDACTION_MARKER, Redactor


@pytest.fixture
def redactor() -> Redactor:
    return Redactor()


class TestSensitiveKeys:
    """Tests for key-based redaction."""

    def test_known_keys(self, redactor):
        result = redactor.redact({"Password": "hunter2", "Path": "C:\\temp"})

        assert result == {"Password": REDACTION_MARKER, "Path": "C:\\temp"}

    def test_key_pattern(self, redactor):
        result = redactor.redact({"db_password_hash": "x", "X-Auth-Header": "y", "Name": "svc"})

        assert result["db_password_hash"] == REDACTION_MARKER
        assert result["X-Auth-Header"] == REDACTION_MARKER
        assert result["Name"] == "svc"

    def test_nested_structures(self, redactor):
        result = redactor.redact(
            {
                "outer": {"api_key": "k", "region": "westus"},
                "items": [{"token": "t"}, "plain"],
            }
        )

        assert result == {
            "outer": {"api_key": REDACTION_MARKER, "region": "westus"},
            "items": [{"token": REDACTION_MARKER}, "plain"],
        }

    def test_input_not_modified(self, redactor):
        data = {"secret": "s", "nested": {"password": "p"}}
        redactor.redact(data)

        assert data == {"secret": "s", "nested": {"password": "p"}}


class TestSensitiveValues:
    """Tests for value heuristics applied regardless of key."""

    @pytest.mark.parametrize(
        "value",
        [
            "Bearer abcdefghijklmnopqrstuvwxyz",
            "Basic dXNlcjpwYXNzd29yZA==abc",
            "eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiIxIn0.sig",
            "QUJDREVGR0hJSktMTU5PUFFSU1RVVldYWVphYmNkZWZnaGlqa2xt",
        ],
    )
    def test_credential_like_values(self, redactor, value):
        assert redactor.redact({"Header": value}) == {"Header": REDACTION_MARKER}

    @pytest.mark.parametrize(
        "value",
        [
            "bearer abcdefghijklmnopqrstuvwxyz",
            "BEARER abcdefghijklmnopqrstuvwxyz",
            "basic dXNlcjpwYXNzd29yZA==abc",
            "-Headers @{ Authorization = 'bearer abcdefghijklmnop' }",
        ],
    )
    def test_auth_scheme_matched_in_any_case(self, redactor, value):
        assert redactor.redact({"Argument": value}) == {"Argument": REDACTION_MARKER}

    def test_short_values_kept(self, redactor):
        assert redactor.redact({"Header": "Bearer x"}) == {"Header": "Bearer x"}

    def test_ordinary_values_kept(self, redactor):
        value = "C:\\inetpub\\logs\\LogFiles\\W3SVC1\\u_ex261018.log"

        assert redactor.redact({"Path": value}) == {"Path": value}


class TestValueTypes:
    def test_scalars_preserved(self, redactor):
        data = {"count": 3, "ratio": 0.5, "enabled": True, "missing": None}

        assert redactor.redact(data) == data

    def test_non_finite_floats_become_text(self, redactor):
        result = redactor.redact({"ratio": float("inf"), "other": float("nan")})

        assert result == {"ratio": "inf", "other": "nan"}

    def test_none_input(self, redactor):
        assert redactor.redact(None) is None

    def test_custom_marker_and_keys(self):
        redactor = Redactor(sensitive_keys=["pin"], key_pattern=None, marker="[hidden]")

        assert redactor.redact({"PIN": "1234", "password": "x"}) == {
            "PIN": "[hidden]",
            "password": "x",
        }
