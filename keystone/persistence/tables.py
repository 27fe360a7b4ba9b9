"""SQLAlchemy table definitions for Keystone.

These table definitions are used with SQLAlchemy Core queries.
They match the schema defined in Alembic migrations.
"""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# Metadata object for all tables
metadata = MetaData()

# ============================================================================
# IDENTITIES TABLE
# ============================================================================
identities_table = Table(
    "identities",
    metadata,
    Column("id", UUID, primary_key=True),
    Column("email", String(255), nullable=False),
    Column("username", String(255), nullable=True),
    Column("display_name", String(255), nullable=True),
    Column("phone_number", String(50), nullable=True),
    Column("password_hash", Text, nullable=True),  # NULL for social-only identities
    Column("email_verified", Boolean, nullable=False, server_default="false"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("role", String(50), nullable=False, server_default="user"),
    Column("permissions", JSONB, nullable=False, server_default="[]"),
    # Embedded value objects, stored as documents
    Column("otp_settings", JSONB, nullable=False, server_default="{}"),
    Column("two_factor", JSONB, nullable=False, server_default="{}"),
    Column("trusted_devices", JSONB, nullable=False, server_default="[]"),
    Column("login_history", JSONB, nullable=False, server_default="[]"),
    # Lockout bookkeeping
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lockout_count", Integer, nullable=False, server_default="0"),
    Column("lockout_until", TIMESTAMP(timezone=True), nullable=True),
    Column("last_failed_login_at", TIMESTAMP(timezone=True), nullable=True),
    Column("last_login_at", TIMESTAMP(timezone=True), nullable=True),
    Column(
        "created_at", TIMESTAMP(timezone=True), nullable=False, server_default="NOW()"
    ),
    Column(
        "updated_at", TIMESTAMP(timezone=True), nullable=False, server_default="NOW()"
    ),
)

Index(
    "uq_identities_email_lower",
    func.lower(identities_table.c.email),
    unique=True,
)
Index("uq_identities_username", identities_table.c.username, unique=True)

# ============================================================================
# SOCIAL LINKS TABLE
# ============================================================================
social_links_table = Table(
    "social_links",
    metadata,
    Column("provider", String(50), primary_key=True),  # 'google', 'github', ...
    Column("provider_id", String(255), primary_key=True),  # User ID on the provider
    Column(
        "identity_id",
        UUID,
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("email", String(255), nullable=True),
    Column("display_name", String(255), nullable=True),
    Column("verified", Boolean, nullable=False, server_default="false"),
    Column(
        "connected_at",
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="NOW()",
    ),
    # One account per provider per identity
    UniqueConstraint("identity_id", "provider", name="uq_social_links_identity_provider"),
)

Index("idx_social_links_identity_id", social_links_table.c.identity_id)

# ============================================================================
# OTP CHALLENGES TABLE (at most one live challenge per identity)
# ============================================================================
otp_challenges_table = Table(
    "otp_challenges",
    metadata,
    Column(
        "identity_id",
        UUID,
        ForeignKey("identities.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("hashed_code", String(64), nullable=True),  # NULL for TOTP
    Column("method", String(20), nullable=False),
    Column("purpose", String(50), nullable=False),
    Column("expires_at", TIMESTAMP(timezone=True), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("max_attempts", Integer, nullable=False),
    Column("verified", Boolean, nullable=False, server_default="false"),
    Column("last_sent", TIMESTAMP(timezone=True), nullable=False),
)

# ============================================================================
# REFRESH SESSIONS TABLE
# ============================================================================
refresh_sessions_table = Table(
    "refresh_sessions",
    metadata,
    Column("id", UUID, primary_key=True),
    Column(
        "identity_id",
        UUID,
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("device_id", String(64), nullable=False),
    Column("token_hash", String(64), nullable=False),  # sha256 hex of refresh token
    Column("issued_at", TIMESTAMP(timezone=True), nullable=False),
    Column("expires_at", TIMESTAMP(timezone=True), nullable=False),
    Column("last_used_at", TIMESTAMP(timezone=True), nullable=True),
    Column("revoked_at", TIMESTAMP(timezone=True), nullable=True),
    Column("revoked_reason", String(50), nullable=True),
    UniqueConstraint("token_hash", name="uq_refresh_sessions_token_hash"),
)

Index(
    "idx_refresh_sessions_identity_issued",
    refresh_sessions_table.c.identity_id,
    refresh_sessions_table.c.issued_at,
)

# ============================================================================
# SESSION VERIFICATIONS TABLE (step-up state)
# ============================================================================
session_verifications_table = Table(
    "session_verifications",
    metadata,
    Column(
        "session_id",
        UUID,
        ForeignKey("refresh_sessions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("verified", Boolean, nullable=False, server_default="false"),
    Column("verified_at", TIMESTAMP(timezone=True), nullable=True),
    Column("purpose", String(50), nullable=True),
)

# ============================================================================
# SECURITY EVENTS TABLE (append-only)
# ============================================================================
security_events_table = Table(
    "security_events",
    metadata,
    Column("id", UUID, primary_key=True),
    Column(
        "identity_id",
        UUID,
        ForeignKey("identities.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("type", String(50), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("description", Text, nullable=False),
    Column("context", JSONB, nullable=False, server_default="{}"),
    Column("timestamp", TIMESTAMP(timezone=True), nullable=False),
)

Index(
    "idx_security_events_identity_timestamp",
    security_events_table.c.identity_id,
    security_events_table.c.timestamp.desc(),
)

# ============================================================================
# RATE COUNTERS TABLE (fixed-window counters)
# ============================================================================
rate_counters_table = Table(
    "rate_counters",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("window_start", TIMESTAMP(timezone=True), nullable=False),
    Column("count", Integer, nullable=False),
)
