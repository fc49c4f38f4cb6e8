"""
sysinv error taxonomy.

  MissingIdentityFacts  assembler input lacks OS or osquery identity rows;
                        the cycle is skipped, nothing is written
  FactSourceError       osquery socket unreachable or a query returned a non-zero status
  FactSourceTimeout     the fact fetch exceeded its deadline; raised before any write
  StoreUnavailable      the database could not begin or commit a transaction
  TransactionFailed     a statement failed mid-reconciliation; the transaction was rolled back

"No generation persisted yet" is not an error: the store returns a NotReady value.
"""


class SysinvError(Exception):
    """Base error for sysinv."""


class MissingIdentityFacts(SysinvError):
    """OS identity or osquery version rows were empty."""


class FactSourceError(SysinvError):
    """The fact-collection agent could not answer a query."""


class FactSourceTimeout(FactSourceError):
    """Fact collection did not finish before its deadline."""


class StoreError(SysinvError):
    """Reconciliation store failure."""


class StoreUnavailable(StoreError):
    """Transactional store unreachable; could not begin or commit."""


class TransactionFailed(StoreError):
    """A write inside the reconciliation transaction failed; all writes were rolled back."""
