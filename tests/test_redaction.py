"""Tests for error message redaction."""

from mcp_server.redaction import MIN_SECRET_LENGTH, Redactor


class TestSecretRedaction:
    """Tests for known secret values."""

    def test_secret_value_replaced(self):
        redactor = Redactor({"OPENAI_KEY": "abcdefgh12345678"})

        assert redactor.sanitize("auth with abcdefgh12345678 failed") == "auth with [REDACTED:OPENAI_KEY] failed"

    def test_short_values_left_alone(self):
        redactor = Redactor({"PIN": "1234567"})

        assert len("1234567") < MIN_SECRET_LENGTH
        assert redactor.sanitize("pin 1234567") == "pin 1234567"
        assert redactor.secret_names == []

    def test_longest_value_wins(self):
        redactor = Redactor({"SHORT": "abcdefgh", "LONG": "abcdefghijkl"})

        assert redactor.sanitize("x abcdefghijkl y") == "x [REDACTED:LONG] y"

    def test_update_secrets(self):
        redactor = Redactor({"OLD": "oldvalue123"})
        redactor.update_secrets({"NEW": "newvalue123"})

        assert redactor.sanitize("oldvalue123 newvalue123") == "oldvalue123 [REDACTED:NEW]"
        assert redactor.secret_names == ["NEW"]

    def test_bearer_token(self):
        redactor = Redactor()

        assert redactor.sanitize("Authorization: Bearer eyJhbGciOi.abc.def") == "Authorization: Bearer [REDACTED]"

    def test_well_known_key_format(self):
        redactor = Redactor()

        assert redactor.sanitize("key sk-" + "a" * 32 + " rejected") == "key [REDACTED] rejected"

    def test_empty(self):
        assert Redactor().sanitize("") == ""


class TestPathRedaction:
    """Tests for absolute path redaction."""

    def test_foreign_path(self, tmp_path):
        redactor = Redactor(workspace_root=tmp_path)

        assert redactor.sanitize("open /etc/passwd: permission denied") == "open [PATH]: permission denied"

    def test_workspace_path_kept(self, tmp_path):
        redactor = Redactor(workspace_root=tmp_path)
        inside = str(tmp_path.resolve() / "notes" / "a.md")

        assert redactor.sanitize(f"missing {inside}") == f"missing {inside}"

    def test_no_workspace_redacts_everything(self):
        assert Redactor().sanitize("at /home/user/x") == "at [PATH]"

    def test_urls_untouched(self):
        text = "GET https://example.com/api/v1 failed"

        assert Redactor().sanitize(text) == text

    def test_quoted_path(self):
        assert Redactor().sanitize("no such file: '/var/lib/x'") == "no such file: '[PATH]'"


class TestSanitizeValue:
    """Tests for structured sanitizing."""

    def test_nested(self):
        redactor = Redactor({"TOKEN": "tok_1234567890"})

        value = {"a": ["tok_1234567890", 3], "b": {"c": "/etc/hosts"}, "d": None}

        assert redactor.sanitize_value(value) == {
            "a": ["[REDACTED:TOKEN]", 3],
            "b": {"c": "[PATH]"},
            "d": None,
        }
