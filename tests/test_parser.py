# tests/test_parser.py
"""Tests for the session reference and command extractor."""

from cmdrelay.core.commands import (
    ExtractedCommand,
    clean_command_text,
    extract_command,
    find_session_reference,
    find_session_references,
)

SESSION_ID = "3f2a9c1e-8b7d-4e6f-a5c4-1d2e3f4a5b6c"


def resolver(mapping: dict[str, str]):
    """Build a resolve_token callable from a token -> session id mapping."""
    return lambda token: mapping.get(token.upper())


class TestFindSessionReference:
    """Tests for find_session_reference."""

    def test_keyword_with_hash(self):
        ref = find_session_reference("session #AB12CD34 list files")

        assert ref is not None
        assert ref.kind == "token"
        assert ref.value == "AB12CD34"

    def test_keyword_with_colon(self):
        ref = find_session_reference("Session: ab12cd list files")

        assert ref is not None
        assert ref.value == "AB12CD"

    def test_chinese_keyword(self):
        ref = find_session_reference("会话 #XY98ZT76 运行测试")

        assert ref is not None
        assert ref.value == "XY98ZT76"

    def test_bare_hash_reference(self):
        ref = find_session_reference("#AB12CD34 git status")

        assert ref is not None
        assert ref.value == "AB12CD34"

    def test_uuid_reference(self):
        ref = find_session_reference(f"{SESSION_ID} show the diff")

        assert ref is not None
        assert ref.kind == "uuid"
        assert ref.value == SESSION_ID

    def test_token_preferred_over_uuid(self):
        refs = find_session_references(f"session #AB12CD34 compare with {SESSION_ID}")

        assert [r.kind for r in refs] == ["token"]

    def test_token_longer_than_eight_is_not_a_reference(self):
        assert find_session_reference("session ABCDEFGHIJ run") is None

    def test_no_reference(self):
        assert find_session_reference("hello there") is None

    def test_keyword_reference_listed_before_hash(self):
        refs = find_session_references("fix #123456 in session #AB12CD34")

        assert [r.value for r in refs] == ["AB12CD34", "123456"]


class TestCleanCommandText:
    """Tests for clean_command_text."""

    def test_strips_keyword_reference(self):
        assert clean_command_text("session #AB12CD34 list files") == "list files"

    def test_strips_lead_ins_repeatedly(self):
        assert clean_command_text("会话 #AB12CD34 请执行 npm test") == "npm test"
        assert clean_command_text("session AB12CD please run the tests") == "the tests"

    def test_lead_in_only_at_start(self):
        assert (
            clean_command_text("session #AB12CD34 explain why run fails")
            == "explain why run fails"
        )

    def test_lead_in_needs_word_boundary(self):
        assert clean_command_text("session #AB12CD34 runner status") == "runner status"

    def test_strips_mentions(self):
        assert clean_command_text("@_user_1 session #AB12CD34 git log") == "git log"

    def test_strips_uuid(self):
        assert clean_command_text(f"{SESSION_ID} show the diff") == "show the diff"

    def test_bare_hash_kept_unless_matched(self):
        text = "session #AB12CD34 close issue #123456"

        assert clean_command_text(text, "AB12CD34") == "close issue #123456"
        assert clean_command_text("#AB12CD34 git status", "AB12CD34") == "git status"

    def test_collapses_blank_lines(self):
        text = "session #AB12CD34 first line\n\n\nsecond line"

        assert clean_command_text(text) == "first line\nsecond line"

    def test_reference_only_is_empty(self):
        assert clean_command_text("session #AB12CD34") == ""


class TestExtractCommand:
    """Tests for extract_command."""

    def test_resolves_token_and_strips_reference(self):
        result = extract_command(
            "session #AB12CD34 list files", resolver({"AB12CD34": "s-1"})
        )

        assert result == ExtractedCommand(
            session_id="s-1", command="list files", token="AB12CD34"
        )

    def test_lowercase_token_resolves(self):
        result = extract_command("session #ab12cd34 ls", resolver({"AB12CD34": "s-1"}))

        assert result is not None
        assert result.session_id == "s-1"

    def test_unknown_token_is_no_command(self):
        assert extract_command("session #ZZZZZZZZ list files", resolver({})) is None

    def test_first_resolvable_candidate_wins(self):
        result = extract_command(
            "fix #123456 in session #AB12CD34",
            resolver({"123456": "s-issue", "AB12CD34": "s-1"}),
        )

        assert result is not None
        assert result.session_id == "s-1"
        assert result.command == "fix #123456 in"

    def test_falls_back_to_hash_candidate(self):
        result = extract_command("#AB12CD34 git status", resolver({"AB12CD34": "s-1"}))

        assert result is not None
        assert result.session_id == "s-1"
        assert result.command == "git status"

    def test_uuid_used_directly(self):
        result = extract_command(f"{SESSION_ID} show the diff", resolver({}))

        assert result is not None
        assert result.session_id == SESSION_ID
        assert result.token is None
        assert result.command == "show the diff"

    def test_empty_command_is_no_command(self):
        assert extract_command("session #AB12CD34", resolver({"AB12CD34": "s-1"})) is None
        assert (
            extract_command("session #AB12CD34 请帮我", resolver({"AB12CD34": "s-1"}))
            is None
        )

    def test_no_reference_is_no_command(self):
        assert extract_command("list files", resolver({"AB12CD34": "s-1"})) is None
