"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 12:00:00.000000

Hey future me - this creates EVERYTHING: users, linked accounts, the dimension tables, the
listening history ledger, cached rankings and the embedded documents.

On PostgreSQL the pgvector extension is enabled first (needs CREATE privilege on the database,
or an admin who ran `CREATE EXTENSION vector` beforehand). SQLite gets the same tables, the
embedding column simply holds the vector literal as text there.
"""

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    """Create all tables."""
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("CREATE EXTENSION IF NOT EXISTS vector"))

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("spotify_user_id", sa.String(255), nullable=True),
        sa.Column("spotify_email", sa.String(320), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_linked_accounts_expires", "linked_accounts", ["token_expires_at"])

    op.create_table(
        "artists",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("genres", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "albums",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "album_artists",
        sa.Column(
            "album_id",
            sa.String(64),
            sa.ForeignKey("albums.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "artist_id",
            sa.String(64),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "tracks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "album_id",
            sa.String(64),
            sa.ForeignKey("albums.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tracks_album_id", "tracks", ["album_id"])

    op.create_table(
        "track_artists",
        sa.Column(
            "track_id",
            sa.String(64),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "artist_id",
            sa.String(64),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "track_genres",
        sa.Column(
            "track_id",
            sa.String(64),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("genre", sa.String(255), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "listening_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("track_id", sa.String(64), sa.ForeignKey("tracks.id"), nullable=False),
        sa.Column("played_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "played_at", name="uq_listening_history_user_played_at"),
    )
    op.create_index(
        "ix_listening_history_user_played_at", "listening_history", ["user_id", "played_at"]
    )
    op.create_index("ix_listening_history_track_id", "listening_history", ["track_id"])

    op.create_table(
        "cached_top_artists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("time_range", sa.String(32), nullable=False),
        sa.Column("artist_id", sa.String(64), nullable=False),
        sa.Column("artist_name", sa.String(512), nullable=False),
        sa.Column("artist_image_url", sa.Text(), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_cached_top_artists_user_range", "cached_top_artists", ["user_id", "time_range"]
    )

    op.create_table(
        "generated_documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("summary_type", sa.String(64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_generated_documents_user_type", "generated_documents", ["user_id", "summary_type"]
    )


def downgrade() -> None:
    """Drop all tables (the vector extension is left installed)."""
    op.drop_index("ix_generated_documents_user_type", table_name="generated_documents")
    op.drop_table("generated_documents")
    op.drop_index("ix_cached_top_artists_user_range", table_name="cached_top_artists")
    op.drop_table("cached_top_artists")
    op.drop_index("ix_listening_history_track_id", table_name="listening_history")
    op.drop_index("ix_listening_history_user_played_at", table_name="listening_history")
    op.drop_table("listening_history")
    op.drop_table("track_genres")
    op.drop_table("track_artists")
    op.drop_index("ix_tracks_album_id", table_name="tracks")
    op.drop_table("tracks")
    op.drop_table("album_artists")
    op.drop_table("albums")
    op.drop_table("artists")
    op.drop_index("ix_linked_accounts_expires", table_name="linked_accounts")
    op.drop_table("linked_accounts")
    op.drop_table("users")
