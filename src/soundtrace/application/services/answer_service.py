"""Retrieval + answer service - answers free-text questions about a user's listening.

Two paths:

answer() (the main one, RAG):
    question -> embedding -> nearest documents of the user (whitelisted summary types)
    -> completion with the documents as context -> strict JSON -> AnswerResponse

answer_with_sql() (tool-use escape hatch):
    question -> completion writes ONE SELECT against the listening schema -> read-only execution
    -> rows mapped to TrackInsights -> completion writes a friendly intro -> InsightResponse

Hey future me - the SQL path runs model-written SQL. It goes through ensure_select() and the
read-only engine (DATABASE__READONLY_URL), and it is never called by the RAG path. Keep it that way.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from soundtrace.application.services.token_manager import SessionScope
from soundtrace.config.settings import RagSettings
from soundtrace.domain.dtos import AnswerResponse, InsightResponse, TrackInsight
from soundtrace.domain.entities import GeneratedDocument
from soundtrace.domain.exceptions import InvalidAnswerException
from soundtrace.domain.ports import (
    ICompletionService,
    IEmbeddingService,
    IReadOnlyQueryExecutor,
)
from soundtrace.infrastructure.persistence.readonly_query import ensure_select
from soundtrace.infrastructure.persistence.repositories import DocumentRepository

logger = logging.getLogger(__name__)

ANSWER_SYSTEM_PROMPT = (
    "You are a music listening assistant. You answer questions about ONE user's Spotify "
    "listening history using only the context documents you are given. Reply with JSON only."
)

ANSWER_PROMPT_TEMPLATE = """Context documents about the user's listening history:
---
{context}
---

Question: {question}

Reply with exactly one JSON object and nothing else. Pick ONE of these two formats.

Simple format, for questions that don't ask for a ranking or breakdown:
{{"summary": "<one or two sentences>"}}

Detailed format, for questions about top tracks, genres or a specific period:
{{
  "summary": "<one or two sentences>",
  "topTracks": [{{"title": "...", "artist": "...", "genre": "...", "count": 0}}],
  "genres": [{{"name": "...", "percentage": 0.0}}],
  "period": "<the period covered, e.g. May 2024>"
}}

Rules:
- "summary" is always present.
- In the detailed format "topTracks" and "period" are always present, and "topTracks" and
  "genres" are not both empty. If you have nothing to put there, use the simple format.
- No trailing commas, no comments, no markdown.
"""

LISTENING_SCHEMA = """CREATE TABLE listening_history (
    id varchar PRIMARY KEY,
    user_id varchar NOT NULL,
    track_id varchar NOT NULL,
    played_at timestamp with time zone NOT NULL
);
CREATE TABLE tracks (
    id varchar PRIMARY KEY,
    name text NOT NULL,
    album_id varchar,
    duration_ms integer NOT NULL
);
CREATE TABLE albums (
    id varchar PRIMARY KEY,
    name text NOT NULL
);
CREATE TABLE artists (
    id varchar PRIMARY KEY,
    name text NOT NULL
);
CREATE TABLE track_artists (
    track_id varchar NOT NULL,
    artist_id varchar NOT NULL
);
CREATE TABLE track_genres (
    track_id varchar NOT NULL,
    genre varchar NOT NULL
);"""

SQL_PROMPT_TEMPLATE = """You are a SQL expert. Write ONE SQL query that answers the user's question.

Your query MUST:
- join listening_history with tracks
- join tracks with track_artists and artists to get artist names (as artist_name)
- join tracks with track_genres to get genres (as genre)
- join tracks with albums to get the album name
- select the track name as name
- count plays with COUNT(*) AS listen_count
- use a valid GROUP BY covering every non-aggregated column
- filter on listening_history.user_id = '{user_id}'
- add extra WHERE filters when the question names a genre, an artist or a time period
  (for "pop songs": AND track_genres.genre ILIKE '%pop%')

Output raw SQL only, no explanation.

Schema:
---
{schema}
---
Question: {question}
"""

INTRO_PROMPT = "Write one short, friendly sentence introducing a list of a user's favorite tracks."

NO_RESULTS_SUMMARY = "I couldn't find any information for your request."

_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")
_LEADING_SQL_TAG = re.compile(r"^sql\b", re.IGNORECASE)


def clean_json_response(raw: str) -> str:
    """Repair the usual LLM JSON sloppiness before parsing.

    Trims whitespace, drops trailing commas before } and ], and cuts away anything
    before the first { and after the last } (markdown fences, chatter).
    """
    cleaned = raw.strip()
    cleaned = _TRAILING_COMMA_OBJECT.sub("}", cleaned)
    cleaned = _TRAILING_COMMA_ARRAY.sub("]", cleaned)

    start = cleaned.find("{")
    if start > 0:
        cleaned = cleaned[start:]
    end = cleaned.rfind("}")
    if end != -1 and end < len(cleaned) - 1:
        cleaned = cleaned[: end + 1]
    return cleaned


# Listen up, these rules mirror the two formats the prompt allows. Anything in between means the
# model mixed them up, and we'd rather show an error than a half-filled breakdown.
def validate_answer(answer: AnswerResponse) -> None:
    """Check the internal consistency of a structured answer.

    Raises:
        InvalidAnswerException: On any violated rule
    """
    if answer.summary is None:
        raise InvalidAnswerException("Invalid answer: summary is missing")

    if answer.top_tracks is not None:
        if answer.period is None:
            raise InvalidAnswerException("Invalid answer: topTracks present but period missing")
        if not answer.top_tracks and not answer.genres:
            raise InvalidAnswerException(
                "Invalid answer: detailed format with empty fields, expected the simple format"
            )

    if answer.genres is not None and (answer.top_tracks is None or answer.period is None):
        raise InvalidAnswerException("Invalid answer: genres present but topTracks or period missing")

    if answer.period is not None and answer.top_tracks is None:
        raise InvalidAnswerException("Invalid answer: period present but topTracks missing")


def clean_sql(raw: str) -> str:
    """Strip markdown fences and a leading "sql" language tag from model output."""
    cleaned = raw.strip().replace("```", "").strip().strip("`").strip()
    cleaned = _LEADING_SQL_TAG.sub("", cleaned, count=1)
    return cleaned.strip()


def _first_value(row: dict[str, Any], *columns: str) -> Any:
    for column in columns:
        value = row.get(column)
        if value is not None:
            return value
    return None


def _as_text(row: dict[str, Any], *columns: str) -> str:
    value = _first_value(row, *columns)
    return str(value) if value is not None else "Unknown"


def _as_int(row: dict[str, Any], *columns: str) -> int:
    for column in columns:
        value = row.get(column)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return 0


def row_to_insight(row: dict[str, Any]) -> TrackInsight:
    """Map one result row to a TrackInsight, tolerating the usual column name variants."""
    return TrackInsight(
        title=_as_text(row, "name", "track_name", "title"),
        artist=_as_text(row, "artist_name", "artist"),
        genre=_as_text(row, "genres", "genre"),
        count=_as_int(row, "listen_count", "count"),
    )


class AnswerService:
    """Answers questions about a user's listening history."""

    def __init__(
        self,
        session_scope: SessionScope,
        embedding_service: IEmbeddingService,
        completion_service: ICompletionService,
        query_executor: IReadOnlyQueryExecutor,
        settings: RagSettings,
    ) -> None:
        self._session_scope = session_scope
        self._embedding_service = embedding_service
        self._completion_service = completion_service
        self._query_executor = query_executor
        self._settings = settings

    async def retrieve_context(self, user_id: str, question: str) -> list[GeneratedDocument]:
        """Nearest documents for the question, closest first."""
        embedding = await self._embedding_service.embed(question)
        async with self._session_scope() as session:
            return await DocumentRepository(session).nearest(
                user_id,
                embedding,
                summary_types=list(self._settings.retrieval_summary_types),
                limit=self._settings.retrieval_limit,
            )

    async def answer(self, user_id: str, question: str) -> AnswerResponse:
        """Answer a question from the user's generated documents.

        Raises:
            ExternalServiceException: Embedding or completion call failed
            InvalidAnswerException: The model's JSON was malformed or inconsistent
        """
        documents = await self.retrieve_context(user_id, question)
        context = "\n\n".join(document.content for document in documents)
        prompt = ANSWER_PROMPT_TEMPLATE.format(context=context, question=question)

        raw = await self._completion_service.complete(prompt, system=ANSWER_SYSTEM_PROMPT)
        cleaned = clean_json_response(raw)
        try:
            answer = AnswerResponse.model_validate_json(cleaned)
        except ValidationError as e:
            logger.warning(
                "answer.parse.failed",
                extra={"user_id": user_id, "raw_length": len(raw), "error": str(e)},
            )
            raise InvalidAnswerException("Could not parse the model's JSON answer", raw) from e

        try:
            validate_answer(answer)
        except InvalidAnswerException as e:
            e.raw_response = raw
            logger.warning("answer.validation.failed", extra={"user_id": user_id, "error": e.message})
            raise

        logger.info(
            "answer.completed",
            extra={
                "user_id": user_id,
                "documents": len(documents),
                "detailed": answer.top_tracks is not None,
            },
        )
        return answer

    async def answer_with_sql(self, user_id: str, question: str) -> InsightResponse:
        """Answer a question by letting the model query the listening tables.

        Raises:
            UnsafeQueryException: The model produced something other than a SELECT
            ExternalServiceException: A completion call failed
        """
        prompt = SQL_PROMPT_TEMPLATE.format(
            user_id=user_id, schema=LISTENING_SCHEMA, question=question
        )
        sql = ensure_select(clean_sql(await self._completion_service.complete(prompt)))
        logger.info("answer.sql.generated", extra={"user_id": user_id, "sql": sql})

        rows = await self._query_executor.fetch_all(sql)
        if not rows:
            return InsightResponse(summary=NO_RESULTS_SUMMARY)

        insights = [row_to_insight(row) for row in rows]
        intro = await self._completion_service.complete(INTRO_PROMPT)
        return InsightResponse(summary=intro.strip(), top_tracks=insights)

    async def execute_listening_history_query(self, sql: str) -> str:
        """Run a model-requested SELECT and return the rows as a JSON array string."""
        rows = await self._query_executor.fetch_all(ensure_select(sql))
        # default=str renders datetimes and Decimals from the driver
        return json.dumps(rows, default=str)
