"""
Query Generator

Turns a natural-language question into one read-only SQL statement using the
cached (or freshly discovered) schema of the target connection.

The model's reply is parsed defensively: the first JSON object is taken from
anywhere in the text (code fences and surrounding prose are tolerated), the
required fields are checked, and the SQL is re-validated deterministically.
Confidence and warnings reported by the model are advisory only.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from sqlagent.errors import GenerationFailedError, UnsafeQueryError
from sqlagent.llm import BaseLLMProvider
from sqlagent.models import Dialect, GeneratedQuery, SchemaSnapshot, ValidationResult
from sqlagent.prompts import PromptLoader
from sqlagent.services.connection_manager import ConnectionManager
from sqlagent.services.query_validator import validate_sql
from sqlagent.services.schema_discovery import SchemaDiscovery, describe_schema
from sqlagent.utils import attempt

logger = logging.getLogger(__name__)

GENERATE_PROMPT = "sql/generate_query.md"
EXPLAIN_PROMPT = "sql/explain_query.md"

LOW_CONFIDENCE_WARNING = "Low confidence query - please verify results carefully"
EXPLANATION_UNAVAILABLE = "Query explanation unavailable"

SYNTAX_NOTES: dict[Dialect, list[str]] = {
    Dialect.POSTGRESQL: [
        'Use double quotes for identifiers: "table_name"',
        "String literals use single quotes: 'value'",
        "LIMIT clause: LIMIT n",
        "Date functions: CURRENT_DATE, NOW(), DATE_TRUNC()",
        "String concatenation: || operator or CONCAT()",
    ],
    Dialect.MYSQL: [
        "Use backticks for identifiers: `table_name`",
        "String literals use single quotes: 'value'",
        "LIMIT clause: LIMIT n",
        "Date functions: CURDATE(), NOW(), DATE_FORMAT()",
        "String concatenation: CONCAT()",
    ],
    Dialect.SQLITE: [
        "Flexible identifier quoting (double quotes or brackets)",
        "String literals use single quotes: 'value'",
        "LIMIT clause: LIMIT n",
        "Date functions: date('now'), datetime(), strftime()",
        "String concatenation: || operator",
    ],
}

_VALID_CONFIDENCE = {"high", "medium", "low"}
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def extract_json_object(content: str) -> dict[str, Any] | None:
    """First JSON object in ``content``, preferring a fenced ```json block."""
    fenced = _FENCED_JSON.search(content)
    if fenced:
        try:
            parsed = json.loads(fenced.group(1))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    decoder = json.JSONDecoder()
    start = content.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = content.find("{", start + 1)
    return None


def parse_generation(content: str) -> GeneratedQuery:
    """
    Build a ``GeneratedQuery`` from a model reply.

    Raises:
        GenerationFailedError: No JSON object or a required field is missing
        UnsafeQueryError: The SQL fails the safety check
    """
    payload = extract_json_object(content)
    if payload is None:
        raise GenerationFailedError("No JSON found in LLM response")

    missing = [
        key for key in ("sql", "explanation", "confidence")
        if not isinstance(payload.get(key), str) or not payload[key].strip()
    ]
    if missing:
        raise GenerationFailedError(
            f"LLM response missing required fields: {', '.join(missing)}",
            context={"missing": missing},
        )

    sql = payload["sql"].strip()
    verdict = validate_sql(sql)
    if not verdict.valid:
        raise UnsafeQueryError(verdict.error or "Query rejected", sql=sql)

    confidence = payload["confidence"].strip().lower()
    if confidence not in _VALID_CONFIDENCE:
        confidence = "low"

    raw_warnings = payload.get("warnings")
    warnings = [str(w) for w in raw_warnings if w] if isinstance(raw_warnings, list) else []
    if confidence == "low":
        warnings.append(LOW_CONFIDENCE_WARNING)

    return GeneratedQuery(
        sql=sql,
        explanation=payload["explanation"].strip(),
        confidence=confidence,
        warnings=warnings,
    )


class QueryGenerator:
    """LLM-backed SQL generation, explanation and validation."""

    def __init__(
        self,
        connections: ConnectionManager,
        schemas: SchemaDiscovery,
        llm: BaseLLMProvider,
        prompts: PromptLoader | None = None,
    ) -> None:
        self._connections = connections
        self._schemas = schemas
        self._llm = llm
        self._prompts = prompts or PromptLoader()

    async def generate(
        self,
        user_id: str,
        connection_id: str,
        question: str,
        dry_run: bool = False,
    ) -> GeneratedQuery:
        """
        Generate SQL for ``question`` against a connection's schema.

        ``dry_run`` does not change generation; it is carried so callers can
        log intent. Executing the result is the executor's job.

        Raises:
            ConnectionNotFoundError: Unknown connection
            GenerationFailedError: The model call failed or the reply was unusable
            UnsafeQueryError: The generated SQL was rejected
        """
        logger.info(
            "Generating SQL query",
            extra={"user_id": user_id, "connection_id": connection_id, "dry_run": dry_run},
        )
        connection = await self._connections.require_connection(user_id, connection_id)

        snapshot = await self._schemas.get_cached(user_id, connection_id)
        if snapshot is None:
            logger.info("Schema not cached, discovering", extra={"connection_id": connection_id})
            snapshot = await self._schemas.discover(user_id, connection_id)

        prompt = self.build_prompt(question, snapshot, connection.dialect)
        params = self._prompts.get_metadata(GENERATE_PROMPT)
        try:
            response = await self._llm.chat(
                [{"role": "user", "content": prompt}],
                temperature=params.get("temperature"),
                max_tokens=params.get("max_tokens"),
            )
        except Exception as exc:
            logger.error(f"LLM call for SQL generation failed: {exc}")
            raise GenerationFailedError(f"Failed to generate SQL: {exc}") from exc

        try:
            result = parse_generation(response.content)
        except UnsafeQueryError as exc:
            logger.warning(
                f"Generated SQL rejected: {exc.message}",
                extra={"connection_id": connection_id, "sql": (exc.sql or "")[:200]},
            )
            raise
        except GenerationFailedError:
            logger.error(
                "Failed to parse LLM query response",
                extra={"connection_id": connection_id, "content": response.content[:500]},
            )
            raise

        logger.info(
            "SQL query generated",
            extra={
                "connection_id": connection_id,
                "confidence": result.confidence,
                "warning_count": len(result.warnings),
            },
        )
        return result

    def build_prompt(self, question: str, snapshot: SchemaSnapshot, dialect: Dialect) -> str:
        return self._prompts.render(
            GENERATE_PROMPT,
            dialect=dialect.value,
            syntax_notes=SYNTAX_NOTES[dialect],
            ai_summary=snapshot.ai_summary,
            schema_description=describe_schema(snapshot),
            question=question,
        )

    async def explain(self, sql: str, dialect: Dialect) -> str:
        """Plain-language description of ``sql``. Best-effort; never validates."""
        params = self._prompts.get_metadata(EXPLAIN_PROMPT)
        prompt = self._prompts.render(EXPLAIN_PROMPT, dialect=dialect.value, sql=sql)
        reply = await attempt(
            self._llm.chat(
                [{"role": "user", "content": prompt}],
                temperature=params.get("temperature"),
                max_tokens=params.get("max_tokens"),
            )
        )
        if not reply.ok:
            logger.warning(f"Failed to explain query: {reply.error}")
            return EXPLANATION_UNAVAILABLE
        return reply.value.content.strip() or EXPLANATION_UNAVAILABLE

    def validate(self, sql: str, dialect: Dialect | str | None = None) -> ValidationResult:
        return validate_sql(sql, dialect)
