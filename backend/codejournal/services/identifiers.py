"""
Code Journal Backend — Identifier Service
==========================================

What:  Mints global user IDs of the form `<group-number><uuid4>`.
How:   Numeric submission / file / comment IDs come from the relational
       store's autoincrement keys; only the federation ID is minted here.
"""

import re
import uuid
from typing import Optional

from codejournal.config import settings
from codejournal.exceptions import ValidationError

_UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)


def mint_global_user_id(group_number: Optional[int] = None) -> str:
    group = settings.group_number if group_number is None else group_number
    return f"{group}{uuid.uuid4()}"


def split_global_user_id(value: str):
    """
    Split a global user ID into (group_number, uuid string).

    Raises ValidationError when the value is not `<digits><uuid4>`.
    """
    if not isinstance(value, str) or len(value) <= 36:
        raise ValidationError(message="Malformed user ID", field="userId")
    prefix, suffix = value[:-36], value[-36:]
    if not prefix.isdigit() or not _UUID_PATTERN.match(suffix):
        raise ValidationError(message="Malformed user ID", field="userId")
    return int(prefix), suffix


def is_local_user_id(value: str) -> bool:
    group, _ = split_global_user_id(value)
    return group == settings.group_number
