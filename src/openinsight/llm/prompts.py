from __future__ import annotations

_READ_ONLY_RULES = """\
Return ONLY a valid SQL query that performs READ operations (SELECT, WITH, UNION, etc.).
NEVER generate INSERT, UPDATE, DELETE, DROP, ALTER, CREATE, TRUNCATE, REPLACE, GRANT, \
REVOKE, EXEC, CALL, PRAGMA, ATTACH, DETACH, VACUUM or any other mutation operation.
Return exactly one statement.
IMPORTANT: Always wrap table AND column names in double quotes to preserve case \
sensitivity (e.g., "User"."userId", "Order"."createdAt")."""

SQL_GENERATION_SYSTEM_PROMPT = """\
You are a SQL expert. Convert natural language questions into {dialect} SQL.
{rules}

Database schema:
<schema dialect="{dialect}">
{schema_context}
</schema>

Put the query in the `sql` field with no explanation or markdown."""

SQL_REPAIR_SYSTEM_PROMPT = """\
You are a SQL expert. Fix the {dialect} SQL query based on the error message.
{rules}

Database schema:
<schema dialect="{dialect}">
{schema_context}
</schema>

Put the corrected query in the `sql` field with no explanation or markdown."""

SQL_REPAIR_USER_PROMPT = """\
SQL Query:
{failed_sql}

Error:
{error_message}

Please fix the query."""


def build_generation_system_prompt(schema_context: str, dialect: str = "SQL") -> str:
    return SQL_GENERATION_SYSTEM_PROMPT.format(
        dialect=dialect, rules=_READ_ONLY_RULES, schema_context=schema_context
    )


def build_repair_system_prompt(schema_context: str, dialect: str = "SQL") -> str:
    return SQL_REPAIR_SYSTEM_PROMPT.format(
        dialect=dialect, rules=_READ_ONLY_RULES, schema_context=schema_context
    )


def build_repair_user_prompt(failed_sql: str, error_message: str) -> str:
    return SQL_REPAIR_USER_PROMPT.format(failed_sql=failed_sql, error_message=error_message)
