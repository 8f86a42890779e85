"""
SQL Identifier Safety.

Schema, table and column names are the only things interpolated into SQL
text. Each name must be a plain PostgreSQL identifier (letters, digits,
underscore, not starting with a digit), optionally wrapped in one pair of
double quotes, at most 63 bytes. Names that pass are rendered with
psycopg.sql.Identifier, which always quotes them.

Exports:
    check_identifier: Validate and unquote a single name
    identifier: psycopg Identifier for one name
    qualified_name: psycopg Identifier for schema.table
    column_reference: psycopg Composable for `col`, `t.col`, `s.t.col`, `*`, `t.*`
"""

import re
from typing import List

from psycopg import sql

from exceptions import MalformedQueryError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

MAX_IDENTIFIER_LENGTH = 63


def check_identifier(name: str, kind: str = "identifier") -> str:
    """
    Validate a single identifier and return it without surrounding quotes.

    Raises:
        MalformedQueryError: If the name is not a plain SQL identifier
    """
    if not isinstance(name, str) or not name:
        raise MalformedQueryError(f"Empty {kind}", details={"kind": kind, "value": name})

    bare = name
    if len(bare) >= 2 and bare[0] == '"' and bare[-1] == '"':
        bare = bare[1:-1]

    if not _IDENTIFIER.match(bare):
        raise MalformedQueryError(
            f"Invalid {kind} '{name}': only letters, digits and underscore are allowed",
            details={"kind": kind, "value": name},
        )
    if len(bare.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
        raise MalformedQueryError(
            f"Invalid {kind} '{name}': longer than {MAX_IDENTIFIER_LENGTH} bytes",
            details={"kind": kind, "value": name},
        )
    return bare


def split_reference(reference: str, kind: str = "column") -> List[str]:
    """Split `schema.table.column` into checked parts; `*` allowed as last part."""
    if not isinstance(reference, str) or not reference.strip():
        raise MalformedQueryError(f"Empty {kind} reference", details={"kind": kind})

    parts = reference.strip().split(".")
    if len(parts) > 3:
        raise MalformedQueryError(
            f"Invalid {kind} reference '{reference}': too many parts",
            details={"kind": kind, "value": reference},
        )

    checked = []
    for index, part in enumerate(parts):
        if part == "*" and index == len(parts) - 1:
            checked.append(part)
        else:
            checked.append(check_identifier(part, kind))
    return checked


def identifier(name: str, kind: str = "identifier") -> sql.Identifier:
    return sql.Identifier(check_identifier(name, kind))


def qualified_name(schema_name: str, table_name: str) -> sql.Identifier:
    """Schema-qualified relation, e.g. "public"."countries"."""
    return sql.Identifier(
        check_identifier(schema_name, "schema"),
        check_identifier(table_name, "table"),
    )


def column_reference(reference: str, qualifier: str = None) -> sql.Composable:
    """
    Render a column reference.

    Args:
        reference: `col`, `alias.col`, `schema.table.col`, `*` or `alias.*`
        qualifier: Optional table/alias prefixed when reference is unqualified
    """
    parts = split_reference(reference)
    if qualifier and len(parts) == 1:
        parts = [check_identifier(qualifier, "table alias")] + parts

    if parts[-1] == "*":
        if len(parts) == 1:
            return sql.SQL("*")
        return sql.SQL("{}.*").format(sql.Identifier(*parts[:-1]))
    return sql.Identifier(*parts)
