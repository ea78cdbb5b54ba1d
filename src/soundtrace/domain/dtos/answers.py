"""Answer payloads produced by the question answering service.

The language model is asked for camelCase JSON, so the models accept both the
aliases (``topTracks``) and the Python field names.
"""

from pydantic import BaseModel, ConfigDict, Field


class TrackStat(BaseModel):
    """One track line in a structured answer."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    artist: str | None = None
    genre: str | None = None
    count: int = 0


class GenreStat(BaseModel):
    """Share of listening attributed to one genre."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    percentage: float = 0.0


class AnswerResponse(BaseModel):
    """Structured answer returned by the retrieval path."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str | None = None
    top_tracks: list[TrackStat] | None = Field(default=None, alias="topTracks")
    genres: list[GenreStat] | None = None
    period: str | None = None


class TrackInsight(BaseModel):
    """Row of a SQL tool-path answer."""

    title: str
    artist: str
    genre: str
    count: int


class InsightResponse(BaseModel):
    """Answer returned by the SQL tool path."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    top_tracks: list[TrackInsight] | None = Field(default=None, alias="topTracks")
    genres: list[GenreStat] | None = None
    period: str | None = None
