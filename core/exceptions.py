# core/exceptions.py


class RetrievalError(Exception):
    """Base class for every error raised by the retrieval core"""


class InputValidationError(RetrievalError, ValueError):
    """Malformed or missing request field, or a value outside its allowed set"""


class UnsupportedMetricError(InputValidationError):
    """Requested metric name is not one of the known metrics"""


class ModelNotFoundError(RetrievalError, LookupError):
    """Named model has no backing feature records"""


class QueryNotFoundError(RetrievalError, LookupError):
    """Query identifier does not resolve to a stored vector"""


class CorruptRecordError(RetrievalError, ValueError):
    """Feature record could not be parsed into a usable vector"""


class NumericError(RetrievalError, ArithmeticError):
    """Metric hit a division by zero or an invalid domain"""


class IdentifierParseError(RetrievalError, ValueError):
    """Image identifier carries no numeric id"""
