"""
Snapshot Assembler
-------------------
Turns raw osquery rows into a Snapshot:

  collect_raw_facts(source)  runs the three fixed queries
  assemble(raw)              validates + coerces rows into a Snapshot
  collect_snapshot(source)   both, used by the poller

Identity rows are mandatory: with no os_version or osquery_info row the cycle
fails closed with MissingIdentityFacts. An empty apps result is valid.
App order is preserved exactly as the source returned it.
"""

import math
from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

from sysinv.services.collector import queries
from sysinv.services.shared.errors import MissingIdentityFacts
from sysinv.services.shared.snapshot import ApplicationFact, IdentityFacts, Snapshot

Row = Mapping[str, str]


class FactSource(Protocol):
    def run(self, sql: str) -> list[dict[str, str]]: ...


@dataclass(frozen=True)
class RawFacts:
    os_rows:      Sequence[Row] = field(default=())
    osquery_rows: Sequence[Row] = field(default=())
    app_rows:     Sequence[Row] = field(default=())


def collect_raw_facts(source: FactSource) -> RawFacts:
    return RawFacts(
        os_rows=source.run(queries.OS_VERSION),
        osquery_rows=source.run(queries.OSQUERY_VERSION),
        app_rows=source.run(queries.INSTALLED_APPS),
    )


def parse_timestamp(value) -> float:
    """Seconds since epoch as float. Anything unparseable or non-finite becomes 0.0."""
    if value is None or value == "":
        return 0.0
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return 0.0
    return ts if math.isfinite(ts) else 0.0


def _s(row: Row, key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def _application(row: Row) -> ApplicationFact:
    return ApplicationFact(
        name=_s(row, "name"),
        path=_s(row, "path"),
        bundle_identifier=_s(row, "bundle_identifier"),
        bundle_name=_s(row, "bundle_name"),
        bundle_short_version=_s(row, "bundle_short_version"),
        display_name=_s(row, "display_name"),
        minimum_system_version=_s(row, "minimum_system_version"),
        last_opened_time=parse_timestamp(row.get("last_opened_time")),
    )


def assemble(raw: RawFacts) -> Snapshot:
    if not raw.os_rows:
        raise MissingIdentityFacts("no OS version information found")
    if not raw.osquery_rows:
        raise MissingIdentityFacts("no osquery version information found")

    os_row      = raw.os_rows[0]
    osquery_row = raw.osquery_rows[0]
    identity = IdentityFacts(
        os_name=_s(os_row, "name"),
        os_version=_s(os_row, "version"),
        os_platform=_s(os_row, "platform"),
        osquery_version=_s(osquery_row, "version"),
    )
    return Snapshot(
        identity=identity,
        applications=tuple(_application(row) for row in raw.app_rows),
    )


def collect_snapshot(source: FactSource) -> Snapshot:
    return assemble(collect_raw_facts(source))
