"""Tests for the action protocol codec."""

from __future__ import annotations

import pytest

from kestrel.engine.protocol import (
    BOOTSTRAP_ARGUMENTS,
    ValidationErrorKind,
    build_bootstrap_invocation,
    extract_text_invocations,
    parse_text_arguments,
    validate_edit_operations,
    validate_invocation,
)
from kestrel.models.base import ActionInvocation
from tests.fakes import FakeEditFile, FakeReadFile, FakeScout


class _WriteFile(FakeEditFile):
    __kestrel_register__ = False

    name = "write-file"
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
        "required": ["path", "content"],
    }


def _inv(name: str, arguments) -> ActionInvocation:
    return ActionInvocation(id="call_0", name=name, arguments=arguments)


class TestTextFallback:
    def test_bracket_form_with_quoted_args(self):
        invocations, cleaned = extract_text_invocations(
            'Let me look.\n[read-file path="src/app.py"]',
        )
        assert len(invocations) == 1
        assert invocations[0].name == "read-file"
        assert invocations[0].arguments == {"path": "src/app.py"}
        assert invocations[0].id.startswith("parsed_")
        assert cleaned == "Let me look."

    def test_bracket_form_with_json_args(self):
        invocations, _ = extract_text_invocations('[glob {"pattern": "**/*.py"}]')
        assert invocations[0].arguments == {"pattern": "**/*.py"}

    def test_paren_form_needs_known_name(self):
        text = 'I will call read-file(path="a.py") now'
        unknown, _ = extract_text_invocations(text)
        known, cleaned = extract_text_invocations(text, ["read-file"])
        assert unknown == []
        assert known[0].arguments == {"path": "a.py"}
        assert "read-file(" not in cleaned

    def test_plain_text_has_no_invocations(self):
        invocations, cleaned = extract_text_invocations("Nothing to do here.")
        assert invocations == []
        assert cleaned == "Nothing to do here."

    def test_quoted_values_win_over_unquoted(self):
        assert parse_text_arguments('path="a b.py" depth=2') == {"path": "a b.py", "depth": "2"}

    def test_unparseable_arguments(self):
        assert parse_text_arguments("just words") is None


class TestBootstrap:
    def test_default_probe(self):
        invocation = build_bootstrap_invocation(suffix="abc")
        assert invocation.name == "structure-scout"
        assert invocation.arguments == BOOTSTRAP_ARGUMENTS
        assert invocation.id == "auto_structure_scout_abc"

    def test_other_capability_gets_no_arguments(self):
        invocation = build_bootstrap_invocation("list-dir", suffix="1")
        assert invocation.arguments == {}
        assert invocation.id == "auto_list_dir_1"

    def test_arguments_are_a_copy(self):
        invocation = build_bootstrap_invocation()
        invocation.arguments["maxDepth"] = 99
        assert BOOTSTRAP_ARGUMENTS["maxDepth"] == 2


class TestValidation:
    def test_unknown_capability(self):
        issue = validate_invocation(_inv("nope", {}), None)
        assert issue.kind == ValidationErrorKind.UNKNOWN_CAPABILITY

    def test_missing_required_field(self):
        issue = validate_invocation(_inv("read-file", {}), FakeReadFile())
        assert issue.kind == ValidationErrorKind.MISSING_FIELD
        assert issue.field == "path"
        assert 'Missing REQUIRED parameter "path"' in issue.message
        assert "File path." in issue.message

    def test_empty_required_field(self):
        issue = validate_invocation(_inv("read-file", {"path": ""}), FakeReadFile())
        assert issue.kind == ValidationErrorKind.EMPTY_FIELD

    def test_wrong_type(self):
        issue = validate_invocation(
            _inv("read-file", {"path": "a.py", "startLine": "ten"}), FakeReadFile(),
        )
        assert issue.kind == ValidationErrorKind.WRONG_TYPE
        assert issue.field == "startLine"

    def test_bool_is_not_an_integer(self):
        issue = validate_invocation(
            _inv("structure-scout", {"maxDepth": True}), FakeScout(),
        )
        assert issue.kind == ValidationErrorKind.WRONG_TYPE

    def test_string_arguments_are_decoded(self):
        assert validate_invocation(_inv("read-file", '{"path": "a.py"}'), FakeReadFile()) is None

    def test_malformed_json_arguments(self):
        issue = validate_invocation(_inv("read-file", '{"path": '), FakeReadFile())
        assert issue.kind == ValidationErrorKind.MALFORMED_ARGUMENTS

    def test_non_object_json_arguments(self):
        issue = validate_invocation(_inv("read-file", "[1, 2]"), FakeReadFile())
        assert issue.kind == ValidationErrorKind.MALFORMED_ARGUMENTS

    def test_write_file_missing_content_hint(self):
        issue = validate_invocation(_inv("write-file", {"path": "a.py"}), _WriteFile())
        assert issue.kind == ValidationErrorKind.WRITE_MISSING_CONTENT
        assert "edit-file" in issue.message

    def test_write_file_content_must_be_string(self):
        issue = validate_invocation(
            _inv("write-file", {"path": "a.py", "content": ["x"]}), _WriteFile(),
        )
        assert issue.kind == ValidationErrorKind.WRONG_TYPE
        assert issue.field == "content"

    def test_edit_file_missing_edits(self):
        issue = validate_invocation(_inv("edit-file", {"path": "a.py"}), FakeEditFile())
        assert issue.kind == ValidationErrorKind.MALFORMED_EDITS

    def test_valid_edit(self):
        args = {
            "path": "a.py",
            "edits": [{"type": "replace", "match": "old", "replace": "new"}],
        }
        assert validate_invocation(_inv("edit-file", args), FakeEditFile()) is None


class TestEditOperations:
    @pytest.mark.parametrize(
        ("edits", "kind", "field"),
        [
            ([], ValidationErrorKind.MALFORMED_EDITS, "edits"),
            (["replace"], ValidationErrorKind.INVALID_EDIT_OPERATION, "edits[0]"),
            ([{}], ValidationErrorKind.MISSING_EDIT_FIELD, "edits[0].type"),
            ([{"type": "rename"}], ValidationErrorKind.INVALID_EDIT_OPERATION, "edits[0].type"),
            (
                [{"type": "replace", "match": "a", "replace": "b", "matchMode": "fuzzy"}],
                ValidationErrorKind.INVALID_EDIT_FIELD,
                "edits[0].matchMode",
            ),
            ([{"type": "delete"}], ValidationErrorKind.MISSING_EDIT_FIELD, "edits[0].match"),
            (
                [{"type": "replace", "match": "a"}],
                ValidationErrorKind.MISSING_EDIT_FIELD,
                "edits[0].replace",
            ),
            (
                [{"type": "insert", "anchor": "x", "position": "middle", "content": "y"}],
                ValidationErrorKind.INVALID_EDIT_FIELD,
                "edits[0].position",
            ),
            (
                [{"type": "replace-between", "start": "a", "replace": "b"}],
                ValidationErrorKind.MISSING_EDIT_FIELD,
                "edits[0].end",
            ),
        ],
    )
    def test_invalid_edits(self, edits, kind, field):
        issue = validate_edit_operations(edits)
        assert issue.kind == kind
        assert issue.field == field

    def test_reports_first_bad_index(self):
        edits = [
            {"type": "delete", "match": "x"},
            {"type": "insert", "anchor": "y", "position": "after"},
        ]
        issue = validate_edit_operations(edits)
        assert issue.field == "edits[1].content"
        assert issue.message.startswith("edit-file edits[1]")

    def test_empty_replacement_string_is_allowed(self):
        assert validate_edit_operations(
            [{"type": "replace", "match": "x", "replace": ""}],
        ) is None
