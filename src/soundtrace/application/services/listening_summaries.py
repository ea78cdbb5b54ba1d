"""Pure builders for the text and metadata of generated documents.

Nothing in here touches the database or the network: every function takes ListeningRecords (plus a
zone or a reference time) and returns strings or JSON-ready dicts. That keeps the formatting rules
testable without fixtures.

Ranking rule used everywhere: count descending, ties in first-seen order of the input. History comes
newest first, so among equally played items the most recently played one wins. Counter.most_common
is stable, which gives us exactly that.
"""

import calendar
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any

from soundtrace.domain.entities import ListeningRecord

UNKNOWN_ALBUM = "unknown album"
UNKNOWN_GENRE = "unknown genre"


@dataclass
class TrackPlays:
    """Plays of one track inside a set of records, with the details of its first record."""

    track_id: str
    track_name: str
    artist_names: list[str]
    album_name: str | None
    duration_ms: int
    genres: list[str] = field(default_factory=list)
    play_count: int = 0

    @property
    def artists_text(self) -> str:
        return ", ".join(sorted(self.artist_names))

    @property
    def genres_text(self) -> str:
        return ", ".join(self.genres) if self.genres else UNKNOWN_GENRE

    def detailed(self, include_id: bool = False) -> dict[str, Any]:
        """JSON-ready record for document metadata."""
        data: dict[str, Any] = {}
        if include_id:
            data["trackId"] = self.track_id
        data.update(
            {
                "trackName": self.track_name,
                "artistNames": list(self.artist_names),
                "playCount": self.play_count,
                "genres": list(self.genres),
                "albumName": self.album_name or UNKNOWN_ALBUM,
                "durationMs": self.duration_ms,
            }
        )
        return data


def format_duration(duration_ms: int) -> str:
    """Render milliseconds as minutes:seconds with zero-padded seconds (215000 -> "3:35")."""
    minutes, remainder = divmod(duration_ms, 60_000)
    return f"{minutes}:{remainder // 1000:02d}"


def month_name(month: int) -> str:
    return calendar.month_name[month]


def group_tracks(records: Iterable[ListeningRecord]) -> list[TrackPlays]:
    """Group records by track id, keeping first-seen order."""
    tracks: dict[str, TrackPlays] = {}
    for record in records:
        plays = tracks.get(record.track_id)
        if plays is None:
            plays = TrackPlays(
                track_id=record.track_id,
                track_name=record.track_name,
                artist_names=list(record.artist_names),
                album_name=record.album_name,
                duration_ms=record.duration_ms,
                genres=list(record.genres),
            )
            tracks[record.track_id] = plays
        plays.play_count += 1
    return list(tracks.values())


def rank_tracks(tracks: Sequence[TrackPlays], limit: int) -> list[TrackPlays]:
    # sorted() is stable, equal counts keep their grouping order
    return sorted(tracks, key=lambda t: t.play_count, reverse=True)[:limit]


def count_artists(records: Iterable[ListeningRecord]) -> Counter[str]:
    """Plays per artist name. A play with two artists counts once for each."""
    return Counter(name for record in records for name in record.artist_names)


def count_genres_by_track(tracks: Iterable[TrackPlays]) -> Counter[str]:
    """Number of distinct tracks carrying each genre."""
    return Counter(genre for track in tracks for genre in track.genres)


def count_genres_by_play(records: Iterable[ListeningRecord]) -> Counter[str]:
    """Number of plays carrying each genre."""
    return Counter(genre for record in records for genre in record.genres)


# Hey future me, the denominator is the SUM of all genre counts, not the number of tracks. A track
# tagged "pop" and "dance" adds 1 to both and 2 to the total, so the percentages always add up to
# 100 even though most tracks have several genres.
def genre_percentages(genre_counts: Counter[str], limit: int) -> list[tuple[str, float, int]]:
    """Top genres as (genre, percentage, count)."""
    total = sum(genre_counts.values())
    return [
        (genre, (count * 100.0 / total) if total else 0.0, count)
        for genre, count in genre_counts.most_common(limit)
    ]


def local_time(record: ListeningRecord, zone: tzinfo) -> datetime:
    return record.played_at.astimezone(zone)


def group_by_month(
    records: Iterable[ListeningRecord], zone: tzinfo
) -> dict[tuple[int, int], list[ListeningRecord]]:
    """Bucket records by (year, month) of their local play time."""
    months: dict[tuple[int, int], list[ListeningRecord]] = {}
    for record in records:
        played = local_time(record, zone)
        months.setdefault((played.year, played.month), []).append(record)
    return months


def records_since(
    records: Iterable[ListeningRecord], start: datetime
) -> list[ListeningRecord]:
    """Records played strictly after start."""
    return [record for record in records if record.played_at > start]


def _artist_ranking(records: Sequence[ListeningRecord], limit: int) -> str:
    return ", ".join(
        f"{name} ({count} plays)" for name, count in count_artists(records).most_common(limit)
    )


def _track_ranking(tracks: Sequence[TrackPlays], limit: int, unit: str = "plays") -> str:
    return ", ".join(
        f"{t.track_name} by {t.artists_text} ({t.play_count} {unit})"
        for t in rank_tracks(tracks, limit)
    )


# =================================================================
# Monthly
# =================================================================


def monthly_summary(year: int, month: int, records: Sequence[ListeningRecord]) -> str:
    """Prose summary of one calendar month."""
    tracks = group_tracks(records)
    top_genres = [genre for genre, _ in count_genres_by_track(tracks).most_common(3)]
    genre_text = f" Dominant genres: {', '.join(top_genres)}." if top_genres else ""

    return (
        f"In {month_name(month)} {year}, the user played {len(records)} tracks in total. "
        f"Most played artists: {_artist_ranking(records, 15)}. "
        f"Favorite tracks of the month: {_track_ranking(tracks, 15)}.{genre_text}"
    )


def structured_monthly_summary(
    year: int, month: int, records: Sequence[ListeningRecord]
) -> str:
    """Line-oriented variant of the monthly summary, easy for a model to turn into JSON."""
    tracks = group_tracks(records)
    genre_counts = count_genres_by_track(tracks)

    lines = [f"DETAILED MUSIC DATA - {month_name(month)} {year}", "", "TOP TRACKS WITH FULL DETAILS:"]
    for track in rank_tracks(tracks, 10):
        lines.append(
            f'- "{track.track_name}" by {track.artists_text}'
            f" [Album: {track.album_name or UNKNOWN_ALBUM}]"
            f" [Genres: {track.genres_text}]"
            f" [Duration: {format_duration(track.duration_ms)}]"
            f" : {track.play_count} plays"
        )

    lines += ["", "GENRE DISTRIBUTION:"]
    for genre, percentage, count in genre_percentages(genre_counts, 8):
        lines.append(f"- {genre} : {percentage:.1f}% ({count} tracks)")

    lines += [
        "",
        "GENERAL STATISTICS:",
        f"- Total plays: {len(records)}",
        f"- Unique tracks: {len(tracks)}",
        f"- Distinct genres: {len(genre_counts)}",
    ]
    return "\n".join(lines) + "\n"


def monthly_metadata(year: int, month: int, records: Sequence[ListeningRecord]) -> dict[str, Any]:
    """Metadata shared by the prose and structured monthly documents."""
    tracks = group_tracks(records)
    return {
        "month": f"{year:04d}-{month:02d}",
        "top_artists": [name for name, _ in count_artists(records).most_common(5)],
        "top_genres": [genre for genre, _ in count_genres_by_play(records).most_common(5)],
        "track_count": len(records),
        "unique_tracks": len(tracks),
        "top_tracks_detailed": [t.detailed() for t in rank_tracks(tracks, 10)],
    }


# =================================================================
# Rolling windows
# =================================================================


def daily_summary(records: Sequence[ListeningRecord], zone: tzinfo) -> str:
    """Report of the last 24 hours."""
    tracks = group_tracks(records)
    hours = Counter(local_time(record, zone).hour for record in records)
    peak_hours = ", ".join(f"{hour}h ({count} plays)" for hour, count in hours.most_common(3))

    return (
        "LAST 24 HOURS REPORT:\n\n"
        f"Total plays: {len(records)}\n"
        f"Unique tracks: {len(tracks)}\n\n"
        f"TOP TRACKS:\n{_track_ranking(tracks, 10, unit='times')}\n\n"
        f"TOP ARTISTS:\n{_artist_ranking(records, 10)}\n\n"
        f"PEAK HOURS:\n{peak_hours}"
    )


def daily_metadata(
    records: Sequence[ListeningRecord], now: datetime, zone: tzinfo
) -> dict[str, Any]:
    start = now - timedelta(hours=24)
    return {
        "period_type": "daily",
        "date": now.astimezone(zone).date().isoformat(),
        "total_plays": len(records),
        "period_start": start.isoformat(),
        "period_end": now.isoformat(),
    }


def weekly_summary(records: Sequence[ListeningRecord], zone: tzinfo) -> str:
    """Report of the last 7 days."""
    tracks = group_tracks(records)
    artist_counts = count_artists(records)
    top_genres = ", ".join(
        f"{genre} ({count} tracks)"
        for genre, count in count_genres_by_track(tracks).most_common(8)
    )
    days = Counter(calendar.day_name[local_time(record, zone).weekday()] for record in records)
    active_days = ", ".join(f"{day} ({count} plays)" for day, count in days.most_common(3))
    genre_text = f"\n\nTOP GENRES:\n{top_genres}" if top_genres else ""

    return (
        "LAST 7 DAYS REPORT:\n\n"
        f"Total plays: {len(records)}\n"
        f"Unique tracks: {len(tracks)}\n"
        f"Distinct artists: {len(artist_counts)}\n\n"
        f"TOP TRACKS OF THE WEEK:\n{_track_ranking(tracks, 15, unit='times')}\n\n"
        f"TOP ARTISTS:\n{_artist_ranking(records, 15)}{genre_text}\n\n"
        f"MOST ACTIVE DAYS:\n{active_days}"
    )


def weekly_metadata(
    records: Sequence[ListeningRecord], now: datetime, zone: tzinfo
) -> dict[str, Any]:
    return {
        "period_type": "weekly",
        "week_start": (now - timedelta(days=7)).astimezone(zone).date().isoformat(),
        "week_end": now.astimezone(zone).date().isoformat(),
        "total_plays": len(records),
    }


# =================================================================
# Global documents
# =================================================================


def _top_hours(records: Sequence[ListeningRecord], zone: tzinfo) -> str:
    hours = Counter(local_time(record, zone).hour for record in records)
    return ", ".join(
        f"between {hour}h and {hour + 1}h ({count} plays)"
        for hour, count in hours.most_common(3)
    )


def hourly_summary(records: Sequence[ListeningRecord], zone: tzinfo) -> str:
    """Which hours of the day the user listens most."""
    return f"The user mostly listens to music {_top_hours(records, zone)}."


def hourly_metadata(records: Sequence[ListeningRecord], zone: tzinfo) -> dict[str, Any]:
    return {"pattern_type": "hourly_listening", "top_hours": _top_hours(records, zone)}


def global_top_tracks_summary(records: Sequence[ListeningRecord]) -> str:
    """All-time favorite tracks with a genre breakdown."""
    tracks = group_tracks(records)
    genre_analysis = ", ".join(
        f"{genre} ({count} tracks)"
        for genre, count in count_genres_by_track(tracks).most_common(5)
    )
    genre_text = (
        f" Genre analysis shows a preference for: {genre_analysis}." if genre_analysis else ""
    )
    return (
        "The user keeps coming back to these favorite tracks: "
        f"{_track_ranking(tracks, 10, unit='times')}. "
        "This shows their musical taste and repeat-listening habits." + genre_text
    )


def global_top_tracks_metadata(records: Sequence[ListeningRecord]) -> dict[str, Any]:
    tracks = group_tracks(records)
    genre_counts = count_genres_by_play(records)
    return {
        "total_plays": len(records),
        "unique_tracks": len(tracks),
        "unique_genres": len(genre_counts),
        "top_tracks_detailed": [t.detailed(include_id=True) for t in rank_tracks(tracks, 20)],
        "top_genres_detailed": [
            {"genre": genre, "trackCount": count}
            for genre, count in genre_counts.most_common(10)
        ],
        "average_plays_per_track": len(records) / len(tracks) if tracks else 0.0,
    }
