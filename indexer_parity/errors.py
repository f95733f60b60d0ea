class IndexerParityError(Exception):
    """Base class for errors raised by the verifier."""


class ConfigError(IndexerParityError):
    """Invalid or incomplete run configuration. Aborts the run."""


class ConnectivityError(IndexerParityError):
    """A replica could not be reached or answered with a server error."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class SchemaError(IndexerParityError):
    """No endpoint candidate for a table is served by the replica."""
