from __future__ import annotations

import re

from .errors import ValidationError

MaxNameLength = 255
MaxExpressionLength = 4096

_NAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")


def validate_table_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > MaxNameLength:
        raise ValidationError(f"table name length invalid: {name!r}")

    if _NAME_RE.match(name) is None:
        raise ValidationError(f"table name contains invalid characters: {name!r}")


def validate_index_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > MaxNameLength:
        raise ValidationError(f"index name length invalid: {name!r}")

    if _NAME_RE.match(name) is None:
        raise ValidationError(f"index name contains invalid characters: {name!r}")


def validate_expression(expression: str) -> None:
    if not isinstance(expression, str) or not expression.strip():
        raise ValidationError("expression is empty")

    if len(expression) > MaxExpressionLength:
        raise ValidationError(f"expression exceeds maximum length of {MaxExpressionLength}")

    if any(ord(c) < 32 and c not in "\t\n\r" for c in expression):
        raise ValidationError("expression contains control characters")
