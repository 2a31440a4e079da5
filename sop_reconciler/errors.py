"""Typed errors raised by the reconciliation pipeline.

Callers map these to their own transport (HTTP status, exit code, ...).
A structurally empty result, such as "no related SOPs", is never an error.
"""


class SOPReconcilerError(Exception):
    """Base class for all pipeline errors."""

    pass


class NotFoundError(SOPReconcilerError):
    """A document or SOP id is unknown."""

    pass


class NotYetAnalyzedError(SOPReconcilerError):
    """A merge was requested for a document without a stored parsed SOP."""

    pass


class ExtractionError(SOPReconcilerError):
    """Text or structure could not be extracted from a document."""

    pass


class UnsupportedFormatError(ExtractionError):
    """The document's file kind has no parser."""

    pass


class ModelError(SOPReconcilerError):
    """The language model call failed."""

    pass


class SchemaError(ModelError):
    """The language model answered, but not with the expected JSON shape."""

    pass


class ConfigurationError(SOPReconcilerError):
    """Required capability configuration is missing."""

    pass
