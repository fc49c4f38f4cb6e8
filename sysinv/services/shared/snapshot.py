"""
In-memory value types passed between the collector, the store and the API.

  IdentityFacts      OS name/version/platform + osquery version of one observation
  ApplicationFact    one installed application as observed (not yet persisted)
  Snapshot           IdentityFacts + ordered ApplicationFacts
  ApplicationView    one persisted InstalledApp row, detached from the session
  CurrentView        a generation plus the app rows visible for it
  GenerationSummary  one generation without its rows
  ReconcileResult    what a reconcile() call did
  NotReady           "nothing persisted yet" - a result, not an error
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Fields compared when deciding whether an application changed.
# name/path/bundle_identifier form the key; last_opened_time is ignored.
CHANGE_TRACKED_FIELDS = (
    "bundle_name",
    "bundle_short_version",
    "display_name",
    "minimum_system_version",
)


@dataclass(frozen=True)
class IdentityFacts:
    os_name:         str
    os_version:      str
    os_platform:     str
    osquery_version: str

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (self.os_name, self.os_version, self.os_platform, self.osquery_version)


@dataclass(frozen=True)
class ApplicationFact:
    name:                   str
    path:                   str
    bundle_identifier:      str   = ""
    bundle_name:            str   = ""
    bundle_short_version:   str   = ""
    display_name:           str   = ""
    minimum_system_version: str   = ""
    last_opened_time:       float = 0.0

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (self.name, self.path, self.bundle_identifier)


@dataclass(frozen=True)
class Snapshot:
    identity:     IdentityFacts
    applications: tuple[ApplicationFact, ...] = ()


@dataclass(frozen=True)
class ApplicationView:
    id:                     int
    generation_id:          int
    name:                   str
    path:                   str
    bundle_identifier:      str
    bundle_name:            str
    bundle_short_version:   str
    display_name:           str
    minimum_system_version: str
    last_opened_time:       float
    created_at:             datetime
    end_time:               Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "ApplicationView":
        return cls(
            id=row.id,
            generation_id=row.system_info_id,
            name=row.name,
            path=row.path,
            bundle_identifier=row.bundle_identifier,
            bundle_name=row.bundle_name,
            bundle_short_version=row.bundle_short_version,
            display_name=row.display_name,
            minimum_system_version=row.minimum_system_version,
            last_opened_time=row.last_opened_time,
            created_at=row.created_at,
            end_time=row.end_time,
        )


@dataclass(frozen=True)
class CurrentView:
    generation_id:   int
    os_name:         str
    os_version:      str
    os_platform:     str
    osquery_version: str
    created_at:      datetime
    updated_at:      datetime
    applications:    tuple[ApplicationView, ...] = ()


@dataclass(frozen=True)
class GenerationSummary:
    generation_id:   int
    os_name:         str
    os_version:      str
    os_platform:     str
    osquery_version: str
    created_at:      datetime
    updated_at:      datetime
    active_apps:     int


class ReconcileOutcome(str, enum.Enum):
    created   = "created"     # new generation, initial app set inserted
    unchanged = "unchanged"   # active set matched; nothing written
    replaced  = "replaced"    # active set archived and re-inserted


@dataclass(frozen=True)
class ReconcileResult:
    outcome:       ReconcileOutcome
    generation_id: int
    reconciled_at: datetime
    archived:      int = 0
    inserted:      int = 0
    added:         tuple[tuple[str, str, str], ...] = field(default=())
    removed:       tuple[tuple[str, str, str], ...] = field(default=())
    modified:      tuple[tuple[str, str, str], ...] = field(default=())

    @property
    def changed(self) -> bool:
        return self.outcome is not ReconcileOutcome.unchanged


@dataclass(frozen=True)
class NotReady:
    message: str = "no system information available yet - waiting for first osquery data collection"


NOT_READY = NotReady()
