"""
Code Journal Backend — Input Validation Rules
==============================================

What:  Business validation shared by the services: password policy, names,
       submission-relative paths, category tags, line ranges and base64
       bodies.
Why:   Pydantic schemas check shapes at the HTTP edge; these rules also
       guard the core when it is called directly (tests, reconciliation,
       zip uploads).
How:   Pure functions. Each either returns a normalized value or raises
       codejournal.exceptions.ValidationError naming the offending field.
"""

import base64
import binascii
import posixpath
import re
import string
from typing import Iterable, List

from codejournal.exceptions import ValidationError

# ── Constants ─────────────────────────────────────────────────────────────
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 64
PASSWORD_SPECIAL_CHARACTERS = "!@#$%^&*,.;:_-+=/\"'"
_PASSWORD_ALLOWED = set(string.ascii_letters + string.digits + PASSWORD_SPECIAL_CHARACTERS)

NAME_MAX_LENGTH = 32
SUBMISSION_NAME_MAX_LENGTH = 128
PATH_MAX_LENGTH = 1024
DATA_DIR_NAME = ".data"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _.+#-]{0,31}$")

DELETED_BODY = base64.b64encode(b"[deleted]").decode("ascii")


def validate_password(password: str) -> str:
    """
    Enforce the password policy.

    Length 8..64, at least one lowercase, uppercase, digit and special
    character, and nothing outside letters, digits and the special class.
    """
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise ValidationError(
            message=f"Password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters",
            field="password",
        )
    if any(ch not in _PASSWORD_ALLOWED for ch in password):
        raise ValidationError(
            message="Password contains a character that is not allowed",
            field="password",
        )
    checks = (
        (str.islower, "a lowercase letter"),
        (str.isupper, "an uppercase letter"),
        (str.isdigit, "a digit"),
        (lambda ch: ch in PASSWORD_SPECIAL_CHARACTERS, "a special character"),
    )
    for predicate, label in checks:
        if not any(predicate(ch) for ch in password):
            raise ValidationError(message=f"Password must contain {label}", field="password")
    return password


def normalize_email(email: str) -> str:
    value = (email or "").strip().lower()
    if not _EMAIL_PATTERN.match(value) or len(value) > 320:
        raise ValidationError(message="Invalid email address", field="email")
    return value


def validate_person_name(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value or len(value) > NAME_MAX_LENGTH:
        raise ValidationError(
            message=f"{field} must be between 1 and {NAME_MAX_LENGTH} characters",
            field=field,
        )
    return value


def validate_submission_name(name: str) -> str:
    """Submission names become directory names on disk."""
    value = (name or "").strip()
    if not value or len(value) > SUBMISSION_NAME_MAX_LENGTH:
        raise ValidationError(
            message=f"Submission name must be between 1 and {SUBMISSION_NAME_MAX_LENGTH} characters",
            field="name",
        )
    if any(ch in value for ch in ("/", "\\", "\x00")) or value in (".", "..", DATA_DIR_NAME):
        raise ValidationError(message="Submission name is not a valid directory name", field="name")
    return value


def normalize_path(path: str) -> str:
    """
    Normalize a submission-relative path to forward-slash form.

    Backslashes become slashes, leading `./` and `/` are stripped and empty
    segments collapse. `..` segments, NUL bytes, empty results and paths under
    the `.data` mirror are refused, as is a path (or its sidecar) longer than
    PATH_MAX_LENGTH.
    """
    if path is None or "\x00" in path:
        raise ValidationError(message="Invalid file path", field="path")
    segments = []
    for segment in path.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise ValidationError(
                message="File path must not contain '..'",
                field="path",
                context={"path": path},
            )
        segments.append(segment)
    if not segments:
        raise ValidationError(message="File path is empty", field="path")
    if segments[0] == DATA_DIR_NAME:
        raise ValidationError(
            message=f"File path must not start with {DATA_DIR_NAME}",
            field="path",
            context={"path": path},
        )
    normalized = "/".join(segments)
    if max(len(normalized), len(sidecar_path_for(normalized))) > PATH_MAX_LENGTH:
        raise ValidationError(
            message=f"File path must be at most {PATH_MAX_LENGTH} characters",
            field="path",
            context={"length": len(normalized)},
        )
    return normalized


def sidecar_path_for(path: str) -> str:
    """`src/main.c` -> `src/main.json` (extension replaced, not appended)."""
    stem, _ = posixpath.splitext(path)
    return f"{stem}.json"


def parent_dirs(path: str) -> List[str]:
    """`a/b/c.c` -> `["a", "a/b"]`; a file cannot live where these are files."""
    segments = path.split("/")
    return ["/".join(segments[:i]) for i in range(1, len(segments))]


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Validate, lower-case and de-duplicate category tags (order kept)."""
    result: List[str] = []
    for raw in tags or []:
        tag = (raw or "").strip()
        if not _TAG_PATTERN.match(tag):
            raise ValidationError(
                message=f"Invalid category tag '{raw}'",
                field="tags",
                context={"tag": raw},
            )
        tag = tag.lower()
        if tag not in result:
            result.append(tag)
    return result


def decode_base64(value: str, field: str = "base64Value") -> bytes:
    try:
        return base64.b64decode(value or "", validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(message="Value is not valid base64", field=field) from None


def encode_base64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def count_lines(content: bytes) -> int:
    """Number of lines in a body; never less than one."""
    if not content:
        return 1
    lines = content.count(b"\n")
    if not content.endswith(b"\n"):
        lines += 1
    return max(1, lines)


def validate_line_range(start_line: int, end_line: int, line_count: int) -> None:
    if start_line < 0 or end_line < 0:
        raise ValidationError(message="Line numbers must not be negative", field="startLine")
    if start_line > end_line:
        raise ValidationError(
            message="Start line must not be after end line",
            field="startLine",
            context={"start_line": start_line, "end_line": end_line},
        )
    if end_line > max(1, line_count):
        raise ValidationError(
            message=f"End line {end_line} is outside the file ({line_count} lines)",
            field="endLine",
            context={"end_line": end_line, "line_count": line_count},
        )
