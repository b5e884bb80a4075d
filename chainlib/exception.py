"""
Exception classes.
"""


class ChainError(Exception):
    """Base class for DNSSEC chain building errors"""


class ContextError(ChainError):
    """Validating resolution context could not be created"""


class TransportError(ChainError):
    """Resolution library or transport failure (not a DNS answer)"""


class NoNameError(ChainError):
    """Queried name does not exist"""


class NoDataError(ChainError):
    """Queried name exists but has no records of the requested type"""


class QueryTimeoutError(ChainError):
    """No server answered"""


class InsecureError(ChainError):
    """Answer exists but is not DNSSEC secured"""


class BogusError(ChainError):
    """DNSSEC validation failed"""


class UnknownStatusError(ChainError):
    """Unrecognized response status"""


class EncodingError(ChainError):
    """Conversion of a record or extension to wire format failed"""


class ChainOverflowError(ChainError, OverflowError):
    """Chain data does not fit in the 16-bit extension length field"""


class ValidationFailure(Exception):
    """A DNSSEC check failed while authenticating an answer"""


class InsecureDelegation(Exception):
    """An authenticated unsigned delegation was found above the answer"""


class TLSError(Exception):
    """TLS library failure; message carries the OpenSSL error queue"""
