"""Exception hierarchy for the federated search aggregator."""


class FederatedSearchError(Exception):
    """Base class for errors raised by this package."""


class ReconciliationError(FederatedSearchError):
    """
    The reconciliation store could not create or read a local entity.

    Attributes:
        source_id: Source the record belongs to
        url: Source-scoped identifier of the record
    """

    def __init__(self, message: str, source_id: str | None = None, url: str | None = None):
        super().__init__(message)
        self.source_id = source_id
        self.url = url
