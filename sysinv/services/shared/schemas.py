"""
Pydantic response schemas for the sysinv HTTP API.
Field names match the JSON consumed by the dashboard frontend
(`osquery_version`, `installed_apps`, `last_updated`).
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from sysinv.services.shared.snapshot import ApplicationView, CurrentView, GenerationSummary


def as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Latest data ───────────────────────────────────────────────────────────────

class OSVersionOut(BaseModel):
    name:     str
    version:  str
    platform: str


class AppInfoOut(BaseModel):
    name:                   str
    path:                   str
    bundle_identifier:      str = ""
    bundle_name:            str = ""
    bundle_short_version:   str = ""
    display_name:           str = ""
    minimum_system_version: str = ""
    last_opened_time:       float = 0.0
    end_time:               Optional[float] = None   # epoch seconds; null for active rows

    @classmethod
    def from_view(cls, app: ApplicationView) -> "AppInfoOut":
        return cls(
            name=app.name,
            path=app.path,
            bundle_identifier=app.bundle_identifier,
            bundle_name=app.bundle_name,
            bundle_short_version=app.bundle_short_version,
            display_name=app.display_name,
            minimum_system_version=app.minimum_system_version,
            last_opened_time=app.last_opened_time,
            end_time=as_utc(app.end_time).timestamp() if app.end_time else None,
        )


class LatestDataOut(BaseModel):
    os_version:      OSVersionOut
    osquery_version: str
    installed_apps:  list[AppInfoOut]
    last_updated:    datetime

    @classmethod
    def from_view(cls, view: CurrentView) -> "LatestDataOut":
        return cls(
            os_version=OSVersionOut(name=view.os_name, version=view.os_version, platform=view.os_platform),
            osquery_version=view.osquery_version,
            installed_apps=[AppInfoOut.from_view(a) for a in view.applications],
            last_updated=as_utc(view.updated_at),
        )


class InitializingOut(BaseModel):
    status:  str = "initializing"
    message: str = "System information is being collected. Please try again in a few seconds."


# ── History ───────────────────────────────────────────────────────────────────

class GenerationOut(BaseModel):
    id:              int
    os_name:         str
    os_version:      str
    os_platform:     str
    osquery_version: str
    created_at:      datetime
    updated_at:      datetime
    active_apps:     int

    @classmethod
    def from_summary(cls, g: GenerationSummary) -> "GenerationOut":
        return cls(
            id=g.generation_id,
            os_name=g.os_name,
            os_version=g.os_version,
            os_platform=g.os_platform,
            osquery_version=g.osquery_version,
            created_at=as_utc(g.created_at),
            updated_at=as_utc(g.updated_at),
            active_apps=g.active_apps,
        )


class AppHistoryOut(AppInfoOut):
    id:         int
    created_at: datetime

    @classmethod
    def from_view(cls, app: ApplicationView) -> "AppHistoryOut":
        base = AppInfoOut.from_view(app)
        return cls(id=app.id, created_at=as_utc(app.created_at), **base.model_dump())
