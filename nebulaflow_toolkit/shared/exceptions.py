"""
Exception hierarchy for NebulaFlow Toolkit.

Exception Categories:
- RetryableException: Transient failures that may succeed on retry (RPC, network)
- NonRetryableException: Permanent failures that won't benefit from retry (bad data)
- ConfigurationException: Startup/config errors that prevent operation

Domain exceptions are categorized:
- LedgerUnavailableException -> RetryableException (ledger count/metadata unreachable)
- ActivityDataException -> NonRetryableException (invalid/missing ledger data)
- StoreCorruptionException -> NonRetryableException (persisted bytes can't be decoded)
"""


class RetryableException(Exception):
    """
    Base class for exceptions that may succeed on retry.

    Use for transient failures like:
    - RPC timeouts
    - Rate limiting
    - Temporary network issues
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NonRetryableException(Exception):
    """
    Base class for exceptions that won't benefit from retry.

    Use for permanent failures like:
    - Invalid input data
    - Missing required data
    - Business logic violations
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationException(NonRetryableException):
    """
    Exception for configuration/startup errors.

    Use when:
    - Required environment variables are missing
    - Invalid configuration values
    - Missing required resources (ABI files)
    """

    pass


class LedgerUnavailableException(RetryableException):
    """
    Exception for ledger reads that could not complete.

    Inherits from RetryableException because an unreachable RPC node
    usually recovers; reconciliation retries on the next trigger.
    """

    pass


class ActivityDataException(NonRetryableException):
    """
    Exception for activity data the ledger returned but that can't be used.

    Inherits from NonRetryableException because a malformed tuple or an
    unknown enum value won't change on retry.
    """

    pass


class StoreCorruptionException(NonRetryableException):
    """
    Exception for persisted cache bytes that can't be decoded.

    Raised by the store codec and handled inside the store: the affected
    collection is treated as empty.
    """

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key
