"""
sysinv SQLAlchemy ORM models - both tables in one file.
Uses SQLAlchemy 2.0 Mapped + mapped_column for full type-checker support.

  SystemGeneration  (system_info)     one row per observed identity generation:
                                      OS name/version/platform + osquery version
  InstalledApp      (installed_apps)  one row per application per observation window

Versioning rules:
  - identity columns on SystemGeneration never change after insert
  - updated_at moves only when the generation's active app set is replaced
  - InstalledApp.end_time IS NULL   → row belongs to the active set
    InstalledApp.end_time NOT NULL  → archived; never updated or deleted again
  - per generation, at most one active row per (name, path, bundle_identifier)
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from sysinv.services.shared.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Identity Generation ───────────────────────────────────────────────────────

class SystemGeneration(Base):
    """
    One distinct observed (os_name, os_version, os_platform, osquery_version) tuple.
    A tuple that recurs after the host drifted to another identity gets a new row.
    """
    __tablename__ = "system_info"

    id:              Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    os_name:         Mapped[str]      = mapped_column(String(255), nullable=False)
    os_version:      Mapped[str]      = mapped_column(String(255), nullable=False)
    os_platform:     Mapped[str]      = mapped_column(String(255), nullable=False)
    osquery_version: Mapped[str]      = mapped_column(String(64),  nullable=False)
    created_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index(
            "ix_system_info_identity",
            "os_name", "os_version", "os_platform", "osquery_version", "created_at",
        ),
        Index("ix_system_info_latest", "updated_at", "created_at"),
    )

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.os_name, self.os_version, self.os_platform, self.osquery_version)


# ── Membership Record ─────────────────────────────────────────────────────────

class InstalledApp(Base):
    """
    One application's presence within one generation's observation window.
    Rows are inserted as a full set whenever the generation's app set changes;
    the previous set is archived by stamping end_time.
    """
    __tablename__ = "installed_apps"

    id:                     Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_info_id:         Mapped[int]                = mapped_column(Integer, ForeignKey("system_info.id"), nullable=False)
    name:                   Mapped[str]                = mapped_column(String(512),  nullable=False)
    path:                   Mapped[str]                = mapped_column(String(1024), nullable=False)
    bundle_identifier:      Mapped[str]                = mapped_column(String(512),  nullable=False, default="")
    bundle_name:            Mapped[str]                = mapped_column(String(512),  nullable=False, default="")
    bundle_short_version:   Mapped[str]                = mapped_column(String(128),  nullable=False, default="")
    display_name:           Mapped[str]                = mapped_column(String(512),  nullable=False, default="")
    minimum_system_version: Mapped[str]                = mapped_column(String(128),  nullable=False, default="")
    last_opened_time:       Mapped[float]              = mapped_column(Float, nullable=False, default=0.0)
    created_at:             Mapped[datetime]           = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    end_time:               Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_installed_apps_active", "system_info_id", "end_time"),
        Index("ix_installed_apps_created", "system_info_id", "created_at"),
    )

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (self.name, self.path, self.bundle_identifier)
