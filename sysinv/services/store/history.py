"""
Read-only history queries over the versioned tables.

  list_generations()               every generation, newest first, with active app counts
  read_as_of(at)                   the state that read_latest() would have shown at `at`
  read_generation_history(gen_id)  every app row of a generation, active and archived

A generation's last write as of `at` is the latest of its created_at and any
of its app rows' created_at / end_time that are <= at. The generation with
the latest such write is the one that was current at `at`.
"""

from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import sessionmaker

from sysinv.services.shared.models import InstalledApp, SystemGeneration
from sysinv.services.shared.snapshot import (
    NOT_READY, ApplicationView, CurrentView, GenerationSummary, NotReady,
)
from sysinv.services.store.reconciler import build_view


def _as_db_time(at: datetime) -> datetime:
    """Normalize to UTC; naive input is taken as UTC already."""
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)


def _comparable(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class HistoryReader:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def list_generations(self) -> list[GenerationSummary]:
        active_counts = (
            select(InstalledApp.system_info_id, func.count(InstalledApp.id).label("active"))
              .where(InstalledApp.end_time.is_(None))
              .group_by(InstalledApp.system_info_id)
              .subquery()
        )
        with self._sessions() as session:
            rows = session.execute(
                select(SystemGeneration, func.coalesce(active_counts.c.active, 0))
                  .outerjoin(active_counts, active_counts.c.system_info_id == SystemGeneration.id)
                  .order_by(SystemGeneration.created_at.desc(), SystemGeneration.id.desc())
            ).all()
        return [
            GenerationSummary(
                generation_id=g.id,
                os_name=g.os_name,
                os_version=g.os_version,
                os_platform=g.os_platform,
                osquery_version=g.osquery_version,
                created_at=g.created_at,
                updated_at=g.updated_at,
                active_apps=int(count),
            )
            for g, count in rows
        ]

    def read_as_of(self, at: datetime) -> CurrentView | NotReady:
        at = _as_db_time(at)
        with self._sessions() as session:
            generations = session.execute(
                select(SystemGeneration).where(SystemGeneration.created_at <= at)
            ).scalars().all()
            if not generations:
                return NOT_READY

            last_insert = dict(session.execute(
                select(InstalledApp.system_info_id, func.max(InstalledApp.created_at))
                  .where(InstalledApp.created_at <= at)
                  .group_by(InstalledApp.system_info_id)
            ).all())
            last_archive = dict(session.execute(
                select(InstalledApp.system_info_id, func.max(InstalledApp.end_time))
                  .where(InstalledApp.end_time <= at)
                  .group_by(InstalledApp.system_info_id)
            ).all())

            def last_write(g: SystemGeneration) -> tuple:
                stamps = [g.created_at, last_insert.get(g.id), last_archive.get(g.id)]
                newest = max(_comparable(s) for s in stamps if s is not None)
                return (newest, _comparable(g.created_at), g.id)

            current = max(generations, key=last_write)
            as_of_update = last_write(current)[0]
            rows = session.execute(
                select(InstalledApp)
                  .where(
                      InstalledApp.system_info_id == current.id,
                      InstalledApp.created_at <= at,
                      or_(InstalledApp.end_time.is_(None), InstalledApp.end_time > at),
                  )
                  .order_by(InstalledApp.last_opened_time.desc(), InstalledApp.id.asc())
            ).scalars().all()
            return build_view(current, rows, updated_at=as_of_update)

    def read_generation_history(self, generation_id: int) -> list[ApplicationView] | None:
        """None when the generation does not exist."""
        with self._sessions() as session:
            if session.get(SystemGeneration, generation_id) is None:
                return None
            rows = session.execute(
                select(InstalledApp)
                  .where(InstalledApp.system_info_id == generation_id)
                  .order_by(InstalledApp.created_at.desc(), InstalledApp.id.desc())
            ).scalars().all()
            return [ApplicationView.from_row(r) for r in rows]
