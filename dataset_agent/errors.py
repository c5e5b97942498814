"""Failures that abort an ingestion."""


class IngestError(Exception):
    """Base class for fatal ingestion errors; the message is shown to the caller."""


class FetchError(IngestError):
    """The remote source could not be fetched or answered with a non-2xx status."""


class ParseError(IngestError):
    """The payload could not be parsed in the format it claimed to be."""
