"""
osquery Fact Source
--------------------
Runs SQL against a local osqueryd over its extension socket (Thrift) using the
`osquery` client package. Every query returns a list of string-keyed rows.

OsqueryFactSource opens one socket connection lazily and reuses it; a failed
query drops the connection so the next cycle reconnects.

Reads on the socket are bounded by query_timeout, so a stalled osqueryd fails
the query instead of pinning the worker thread. close() never waits longer
than close_timeout for an in-flight query.
"""

import threading

import osquery
import structlog
from thrift.Thrift import TException

from sysinv.services.shared.errors import FactSourceError


def _set_read_timeout(instance, seconds: float) -> None:
    # ExtensionClient wraps a TSocket in a TBufferedTransport and exposes neither
    transport = getattr(instance, "_transport", None)
    sock = getattr(transport, "_TBufferedTransport__trans", transport)
    set_timeout = getattr(sock, "setTimeout", None)
    if callable(set_timeout):
        set_timeout(seconds * 1000)


class OsqueryFactSource:
    """FactSource backed by the osquery extension socket."""

    def __init__(
        self,
        socket_path: str,
        open_timeout: float = 3,
        query_timeout: float = 30,
        close_timeout: float = 1,
        log=None,
    ):
        self.socket_path   = socket_path
        self.open_timeout  = open_timeout
        self.query_timeout = query_timeout
        self.close_timeout = close_timeout
        self.log           = log if log is not None else structlog.get_logger().bind(component="fact_source")
        self._instance     = None
        self._lock         = threading.Lock()

    def _connect(self):
        if self._instance is None:
            instance = osquery.ExtensionClient(self.socket_path)
            # open() retries until open_timeout and reports failure by returning False
            if not instance.open(timeout=self.open_timeout):
                raise FactSourceError(
                    f"cannot open osquery socket {self.socket_path} within {self.open_timeout}s"
                )
            _set_read_timeout(instance, self.query_timeout)
            self._instance = instance
            self.log.info("osquery_connected", socket=self.socket_path)
        return self._instance.extension_client()

    def run(self, sql: str) -> list[dict[str, str]]:
        with self._lock:
            client = self._connect()
            try:
                result = client.query(sql)
            except (TException, OSError) as exc:
                self._disconnect()
                raise FactSourceError(f"osquery query failed: {exc}") from exc

            if result.status.code != 0:
                raise FactSourceError(f"osquery returned status {result.status.code}: {result.status.message}")
            return [dict(row) for row in (result.response or [])]

    def _disconnect(self) -> None:
        if self._instance is not None:
            try:
                self._instance.close()
            except (TException, OSError) as exc:
                self.log.debug("osquery_close_failed", error=str(exc))
            self._instance = None

    def close(self) -> None:
        """Drop the connection. Gives up after close_timeout if a query still holds it."""
        if not self._lock.acquire(timeout=self.close_timeout):
            self.log.warning("osquery_close_skipped", reason="query in flight", socket=self.socket_path)
            return
        try:
            self._disconnect()
        finally:
            self._lock.release()
