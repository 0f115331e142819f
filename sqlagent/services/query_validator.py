"""
SQL Safety Validation

Deterministic checks that gate every statement before it reaches a driver.
A statement is accepted only when it:

- contains no forbidden keyword anywhere in its upper-cased text, so an
  identifier such as ``created_at`` is rejected along with ``CREATE``
- starts with SELECT or WITH
- has balanced parentheses
- is a single statement (a trailing semicolon is allowed)
"""

from __future__ import annotations

import sqlparse

from sqlagent.models import Dialect, ValidationResult

FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "CREATE",
    "ALTER",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
    "SHUTDOWN",
    "KILL",
)

NOT_SELECT_ERROR = "Query must be a SELECT statement"
UNBALANCED_ERROR = "Unbalanced parentheses"
MULTIPLE_STATEMENTS_ERROR = "Only a single statement is allowed"


def forbidden_keyword(sql: str) -> str | None:
    """First forbidden keyword contained in ``sql``, case-insensitively, or None."""
    upper = sql.upper()
    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in upper:
            return keyword
    return None


def validate_sql(sql: str, dialect: Dialect | str | None = None) -> ValidationResult:
    """
    Check that ``sql`` is a single read-only statement.

    The rules are the same for every dialect; ``dialect`` is accepted so
    callers can pass it through uniformly.
    """
    stripped = sql.strip()
    upper = stripped.upper()

    keyword = forbidden_keyword(stripped)
    if keyword:
        return ValidationResult(valid=False, error=f"Query contains forbidden operation: {keyword}")

    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        return ValidationResult(valid=False, error=NOT_SELECT_ERROR)

    depth = 0
    for char in stripped:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return ValidationResult(valid=False, error=UNBALANCED_ERROR)
    if depth != 0:
        return ValidationResult(valid=False, error=UNBALANCED_ERROR)

    statements = [stmt for stmt in sqlparse.split(stripped) if stmt.strip().strip(";").strip()]
    if len(statements) > 1:
        return ValidationResult(valid=False, error=MULTIPLE_STATEMENTS_ERROR)

    return ValidationResult(valid=True)


def ensure_limit(sql: str, max_rows: int) -> str:
    """
    Append ``LIMIT max_rows`` unless the text already mentions LIMIT.

    The check is a case-insensitive substring match, so an existing LIMIT
    anywhere (including a subquery) leaves the statement untouched.
    """
    if "LIMIT" in sql.upper():
        return sql
    trimmed = sql.strip().rstrip(";").rstrip()
    return f"{trimmed} LIMIT {max_rows}"
