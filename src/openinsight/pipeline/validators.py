from __future__ import annotations

import re

FORBIDDEN_KEYWORDS = frozenset(
    {
        "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
        "REPLACE", "GRANT", "REVOKE", "EXEC", "EXECUTE", "CALL", "PRAGMA",
        "ATTACH", "DETACH", "VACUUM",
    }
)

_FORBIDDEN_RE = re.compile(
    r"\b(" + "|".join(sorted(FORBIDDEN_KEYWORDS)) + r")\b", re.IGNORECASE
)
_WHITESPACE_RE = re.compile(r"\s+")

READ_ONLY_ERROR = "Only SELECT queries are allowed"


def check_read_only(sql: str) -> list[str]:
    """Check that SQL is a single read-only statement. Returns list of errors.

    Rules apply in order: one statement only, no forbidden keyword as a whole
    word anywhere in the text, and the text must open with SELECT or WITH.
    """
    statements = [part for part in sql.split(";") if part.strip()]
    if len(statements) > 1:
        return ["Multiple SQL statements are not allowed"]

    match = _FORBIDDEN_RE.search(sql)
    if match:
        return [f"Forbidden SQL operation: {match.group(1).upper()}"]

    normalized = _WHITESPACE_RE.sub(" ", sql).strip().upper()
    if not (normalized.startswith("SELECT") or normalized.startswith("WITH")):
        first_word = normalized.split(" ", 1)[0] if normalized else "(empty)"
        return [f"Only SELECT/WITH queries are allowed, got: {first_word}"]

    return []


def is_read_only(sql: str) -> bool:
    return not check_read_only(sql)
