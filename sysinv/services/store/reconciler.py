"""
sysinv Reconciliation Store
----------------------------
Persists host snapshots as generations (system_info) with versioned app
membership (installed_apps). One reconcile() call:

1. Resolves the generation for the snapshot's identity tuple
   (reused only if it is the most recently created generation overall,
   otherwise a new generation is created)
2. New generation  → insert the whole app set, done
3. Existing        → load its active set (end_time IS NULL)
4. Compares active vs observed on the tracked fields
5. No difference   → no writes at all
6. Difference      → bump updated_at, archive every active row,
                     insert the full observed set as fresh rows
7. Everything above runs in one transaction with one reconciliation timestamp

read_latest() returns the generation with the newest updated_at and its
active apps, or NOT_READY when nothing has been persisted yet.
"""

from datetime import datetime
from typing import Callable, Iterable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sysinv.services.shared.errors import StoreUnavailable, TransactionFailed
from sysinv.services.shared.models import InstalledApp, SystemGeneration, utcnow
from sysinv.services.shared.snapshot import (
    CHANGE_TRACKED_FIELDS, NOT_READY,
    ApplicationFact, ApplicationView, CurrentView, NotReady,
    ReconcileOutcome, ReconcileResult, Snapshot,
)

AppKey = tuple[str, str, str]


# ── Diffing ───────────────────────────────────────────────────────────────────

def dedupe_observed(apps: Iterable[ApplicationFact]) -> dict[AppKey, ApplicationFact]:
    """Key observed apps by identity. First occurrence wins (source order is last-opened desc)."""
    observed: dict[AppKey, ApplicationFact] = {}
    for app in apps:
        observed.setdefault(app.identity_key, app)
    return observed


def _differs(active: InstalledApp, observed: ApplicationFact) -> bool:
    return any(getattr(active, f) != getattr(observed, f) for f in CHANGE_TRACKED_FIELDS)


def active_set_changed(active: dict[AppKey, InstalledApp], observed: dict[AppKey, ApplicationFact]) -> bool:
    """
    True when the observed set must replace the active set:
    sizes differ, an active key is missing from the observation,
    or a shared key differs on any CHANGE_TRACKED_FIELDS.
    """
    if len(active) != len(observed):
        return True
    for key, row in active.items():
        seen = observed.get(key)
        if seen is None or _differs(row, seen):
            return True
    return False


def classify_changes(
    active: dict[AppKey, InstalledApp],
    observed: dict[AppKey, ApplicationFact],
) -> tuple[tuple[AppKey, ...], tuple[AppKey, ...], tuple[AppKey, ...]]:
    """Return (added, removed, modified) identity keys, each sorted."""
    added    = sorted(k for k in observed if k not in active)
    removed  = sorted(k for k in active if k not in observed)
    modified = sorted(k for k in observed if k in active and _differs(active[k], observed[k]))
    return tuple(added), tuple(removed), tuple(modified)


# ── Store ─────────────────────────────────────────────────────────────────────

class ReconciliationStore:
    """
    Single-writer store. reconcile() must not run concurrently with itself
    (the poller guarantees one in-flight call); read_latest() is safe at any time.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        log=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessions = session_factory
        self._clock    = clock
        self.log       = log if log is not None else structlog.get_logger().bind(component="store")

    # -- write path ----------------------------------------------------------

    def reconcile(self, snapshot: Snapshot) -> ReconcileResult:
        """Apply one observation atomically. Raises StoreUnavailable or TransactionFailed."""
        reconciled_at = self._clock()
        session = self._sessions()
        try:
            try:
                session.connection()  # begins the transaction on a checked-out connection
            except (DBAPIError, DisconnectionError) as exc:
                raise StoreUnavailable(f"could not begin transaction: {exc}") from exc

            try:
                result = self._apply(session, snapshot, reconciled_at)
                session.flush()
            except SQLAlchemyError as exc:
                session.rollback()
                self.log.error("reconcile_rolled_back", error=str(exc))
                raise TransactionFailed(f"reconciliation rolled back: {exc}") from exc

            try:
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreUnavailable(f"could not commit transaction: {exc}") from exc
        finally:
            # close() rolls back anything not committed, including non-SQL errors
            session.close()

        self.log.info(
            "reconcile_complete",
            outcome=result.outcome.value,
            generation_id=result.generation_id,
            archived=result.archived,
            inserted=result.inserted,
            added=len(result.added),
            removed=len(result.removed),
            modified=len(result.modified),
        )
        return result

    def _apply(self, session: Session, snapshot: Snapshot, reconciled_at: datetime) -> ReconcileResult:
        observed = dedupe_observed(snapshot.applications)
        if len(observed) != len(snapshot.applications):
            self.log.warning(
                "duplicate_app_keys_collapsed",
                observed=len(snapshot.applications),
                distinct=len(observed),
            )

        generation = self._resolve_generation(session, snapshot)

        if generation is None:
            identity = snapshot.identity
            generation = SystemGeneration(
                os_name=identity.os_name,
                os_version=identity.os_version,
                os_platform=identity.os_platform,
                osquery_version=identity.osquery_version,
                created_at=reconciled_at,
                updated_at=reconciled_at,
            )
            session.add(generation)
            session.flush()  # assigns generation.id
            self.log.info("generation_created", generation_id=generation.id, identity=identity.as_tuple())
            inserted = self._insert_members(session, generation.id, observed.values(), reconciled_at)
            return ReconcileResult(
                outcome=ReconcileOutcome.created,
                generation_id=generation.id,
                reconciled_at=reconciled_at,
                inserted=inserted,
                added=tuple(sorted(observed)),
            )

        active = self._load_active(session, generation.id)
        if not active_set_changed(active, observed):
            return ReconcileResult(
                outcome=ReconcileOutcome.unchanged,
                generation_id=generation.id,
                reconciled_at=reconciled_at,
            )

        added, removed, modified = classify_changes(active, observed)

        session.execute(
            update(SystemGeneration)
              .where(SystemGeneration.id == generation.id)
              .values(updated_at=reconciled_at)
        )
        archived = self._archive_active(session, generation.id, reconciled_at)
        inserted = self._insert_members(session, generation.id, observed.values(), reconciled_at)
        return ReconcileResult(
            outcome=ReconcileOutcome.replaced,
            generation_id=generation.id,
            reconciled_at=reconciled_at,
            archived=archived,
            inserted=inserted,
            added=added,
            removed=removed,
            modified=modified,
        )

    def _resolve_generation(self, session: Session, snapshot: Snapshot) -> SystemGeneration | None:
        """
        Return the generation to reuse, or None when a new one must be created.
        The newest generation is reused only when its identity tuple matches;
        an older matching generation is never resumed.
        """
        newest = session.execute(
            select(SystemGeneration)
              .order_by(SystemGeneration.created_at.desc(), SystemGeneration.id.desc())
              .limit(1)
        ).scalar_one_or_none()
        if newest is not None and newest.identity == snapshot.identity.as_tuple():
            return newest
        return None

    def _load_active(self, session: Session, generation_id: int) -> dict[AppKey, InstalledApp]:
        rows = session.execute(
            select(InstalledApp)
              .where(InstalledApp.system_info_id == generation_id, InstalledApp.end_time.is_(None))
        ).scalars().all()
        return {row.identity_key: row for row in rows}

    def _archive_active(self, session: Session, generation_id: int, reconciled_at: datetime) -> int:
        result = session.execute(
            update(InstalledApp)
              .where(InstalledApp.system_info_id == generation_id, InstalledApp.end_time.is_(None))
              .values(end_time=reconciled_at)
              .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def _insert_members(
        self,
        session: Session,
        generation_id: int,
        apps: Iterable[ApplicationFact],
        reconciled_at: datetime,
    ) -> int:
        rows = [
            InstalledApp(
                system_info_id=generation_id,
                name=app.name,
                path=app.path,
                bundle_identifier=app.bundle_identifier,
                bundle_name=app.bundle_name,
                bundle_short_version=app.bundle_short_version,
                display_name=app.display_name,
                minimum_system_version=app.minimum_system_version,
                last_opened_time=app.last_opened_time,
                created_at=reconciled_at,
            )
            for app in apps
        ]
        session.add_all(rows)
        session.flush()
        return len(rows)

    # -- read path -----------------------------------------------------------

    def read_latest(self) -> CurrentView | NotReady:
        """Newest generation by updated_at (then created_at, id) with its active apps."""
        with self._sessions() as session:
            generation = session.execute(
                select(SystemGeneration)
                  .order_by(
                      SystemGeneration.updated_at.desc(),
                      SystemGeneration.created_at.desc(),
                      SystemGeneration.id.desc(),
                  )
                  .limit(1)
            ).scalar_one_or_none()
            if generation is None:
                return NOT_READY

            rows = session.execute(
                select(InstalledApp)
                  .where(InstalledApp.system_info_id == generation.id, InstalledApp.end_time.is_(None))
                  .order_by(InstalledApp.last_opened_time.desc(), InstalledApp.id.asc())
            ).scalars().all()
            return build_view(generation, rows)

    def last_updated(self) -> datetime | None:
        with self._sessions() as session:
            return session.execute(
                select(SystemGeneration.updated_at)
                  .order_by(SystemGeneration.updated_at.desc())
                  .limit(1)
            ).scalar_one_or_none()


def build_view(
    generation: SystemGeneration,
    rows: Iterable[InstalledApp],
    updated_at: datetime | None = None,
) -> CurrentView:
    return CurrentView(
        generation_id=generation.id,
        os_name=generation.os_name,
        os_version=generation.os_version,
        os_platform=generation.os_platform,
        osquery_version=generation.osquery_version,
        created_at=generation.created_at,
        updated_at=updated_at if updated_at is not None else generation.updated_at,
        applications=tuple(ApplicationView.from_row(r) for r in rows),
    )
