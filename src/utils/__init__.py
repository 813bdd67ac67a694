"""Shared utilities for the signature reconciler."""

import re

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def safe_identifier(name: str) -> str:
    """Validate and double-quote a PostgreSQL identifier.

    Accepts a bare name or a single ``schema.table`` pair. Anything other than
    letters, digits and underscores is rejected so table names from
    configuration can be interpolated into SQL.

    Args:
        name: Table, column or schema name

    Returns:
        Quoted identifier, e.g. '"petitions"."validations"'

    Raises:
        ValueError: If any part is not a plain identifier
    """
    parts = name.split(".")
    if len(parts) > 2 or not all(_IDENTIFIER.match(part) for part in parts):
        raise ValueError(
            f"Invalid SQL identifier: {name!r}. "
            "Only letters, digits, and underscores are allowed."
        )
    return ".".join(f'"{part}"' for part in parts)
