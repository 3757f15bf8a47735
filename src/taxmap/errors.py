"""Exceptions raised by taxmap."""


class TaxMapError(Exception):
    """Base class for taxmap errors."""


class ConfigurationError(TaxMapError, ValueError):
    """Raised when an extraction or mapping configuration is invalid.

    Always raised before any record or row is processed.
    """


class AmbiguousMatchError(TaxMapError, ValueError):
    """Raised when a dataset row matches records bound to different taxa
    and the mapping policy forbids picking one."""
