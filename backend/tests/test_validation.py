"""
Code Journal Backend — Validation Rule Tests
=============================================

What we test:
    ✅ Password policy boundaries (8 / 7 characters, character classes)
    ✅ Path normalization and refusal of `..`, NUL and `.data`
    ✅ Sidecar path derivation
    ✅ Tags, submission names, base64 and line ranges
"""

import pytest

from codejournal.exceptions import ValidationError
from codejournal.services.validation import (
    DELETED_BODY,
    count_lines,
    decode_base64,
    normalize_email,
    normalize_path,
    normalize_tags,
    sidecar_path_for,
    validate_line_range,
    validate_password,
    validate_submission_name,
)


class TestPasswordPolicy:
    def test_eight_characters_with_all_classes_accepted(self):
        assert validate_password("Abcde1!x") == "Abcde1!x"

    def test_seven_characters_rejected(self):
        with pytest.raises(ValidationError, match="between 8 and 64"):
            validate_password("Abcd1!x")

    def test_sixty_five_characters_rejected(self):
        with pytest.raises(ValidationError):
            validate_password("Aa1!" + "x" * 61)

    @pytest.mark.parametrize(
        "password, missing",
        [
            ("abcdefg1!", "uppercase"),
            ("ABCDEFG1!", "lowercase"),
            ("Abcdefgh!", "digit"),
            ("Abcdefgh1", "special"),
        ],
    )
    def test_each_character_class_required(self, password, missing):
        with pytest.raises(ValidationError, match=missing):
            validate_password(password)

    def test_characters_outside_the_allowed_set_rejected(self):
        with pytest.raises(ValidationError, match="not allowed"):
            validate_password("Abcdef1! ")


class TestEmail:
    def test_lower_cased_and_stripped(self):
        assert normalize_email("  Someone@Example.COM ") == "someone@example.com"

    def test_malformed_rejected(self):
        with pytest.raises(ValidationError):
            normalize_email("not-an-email")


class TestPaths:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("main.c", "main.c"),
            ("./src/main.c", "src/main.c"),
            ("/src//lib/util.c", "src/lib/util.c"),
            ("src\\win\\app.c", "src/win/app.c"),
        ],
    )
    def test_normalized(self, raw, expected):
        assert normalize_path(raw) == expected

    @pytest.mark.parametrize("raw", ["../etc/passwd", "src/../../x.c", "a\x00b", "", "./", ".data/x.json"])
    def test_refused(self, raw):
        with pytest.raises(ValidationError):
            normalize_path(raw)

    def test_paths_are_case_sensitive(self):
        assert normalize_path("Main.c") != normalize_path("main.c")

    def test_sidecar_replaces_extension(self):
        assert sidecar_path_for("src/main.c") == "src/main.json"
        assert sidecar_path_for("Makefile") == "Makefile.json"
        assert sidecar_path_for("a.c") == sidecar_path_for("a.h")


class TestTagsAndNames:
    def test_tags_lower_cased_and_deduplicated(self):
        assert normalize_tags([" Python ", "python", "C++"]) == ["python", "c++"]

    def test_bad_tag_rejected(self):
        with pytest.raises(ValidationError):
            normalize_tags(["-leading-dash"])

    @pytest.mark.parametrize("name", ["", "a/b", "..", ".data", "x" * 129])
    def test_bad_submission_names(self, name):
        with pytest.raises(ValidationError):
            validate_submission_name(name)

    def test_submission_name_stripped(self):
        assert validate_submission_name("  demo ") == "demo"


class TestBodies:
    def test_base64_round(self):
        assert decode_base64("bGd0bQ==") == b"lgtm"

    def test_invalid_base64(self):
        with pytest.raises(ValidationError, match="base64"):
            decode_base64("***")

    def test_deleted_sentinel(self):
        assert decode_base64(DELETED_BODY) == b"[deleted]"

    @pytest.mark.parametrize(
        "content, lines",
        [(b"", 1), (b"int main(){}", 1), (b"a\nb\n", 2), (b"a\nb", 2), (b"\n\n\n", 3)],
    )
    def test_count_lines(self, content, lines):
        assert count_lines(content) == lines


class TestLineRange:
    def test_single_line_on_one_line_file(self):
        validate_line_range(1, 1, 1)

    def test_line_zero_accepted(self):
        validate_line_range(0, 0, 1)

    def test_start_after_end_rejected(self):
        with pytest.raises(ValidationError, match="after end"):
            validate_line_range(3, 2, 10)

    def test_end_past_file_rejected(self):
        with pytest.raises(ValidationError, match="outside the file"):
            validate_line_range(1, 3, 2)

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            validate_line_range(-1, 1, 5)
