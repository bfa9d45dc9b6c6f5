"""Custom exceptions for the transfer server."""


class TransferError(Exception):
    """Base exception for transfer-server errors."""
    pass


class ClientError(TransferError):
    """Exception raised for malformed or incomplete peer requests."""
    pass


class PayloadTooLargeError(ClientError):
    """Exception raised when an upload exceeds the configured size limit."""
    pass


class NotFoundError(TransferError):
    """Exception raised when a requested file does not exist."""
    pass


class TransportError(TransferError):
    """Exception raised when a push to an open channel fails."""
    pass


class StartupError(TransferError):
    """Exception raised when the server cannot bind or use its storage."""
    pass
