class BlibMSPError(Exception):
    """Base class for all conversion errors"""


class FormatInferenceFailure(BlibMSPError, ValueError):
    """Raised when a library format cannot be determined from a file name"""


class LibraryReadError(BlibMSPError):
    """Raised when a library cannot be opened or is structurally unusable"""


class ConversionError(BlibMSPError):
    """Raised when a conversion cannot start or cannot continue"""
