"""Exceptions for the SHALL device client."""


class ShallError(Exception):
    """Base error for all device client failures."""


class NetworkUnreachable(ShallError):
    """The device could not be reached or answered with a non-200 status."""


class MalformedResponse(ShallError):
    """The response body was not JSON of the expected shape."""


class UnexpectedServerValue(ShallError):
    """The response decoded but carried a value outside its allowed domain."""


class RequestTimeout(ShallError):
    """A caller-imposed deadline expired before the device answered."""


class LoadError(ShallError):
    """Fetching the full device status failed."""
