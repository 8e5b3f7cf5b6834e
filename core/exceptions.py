from abc import ABC


class BaseCustomException(Exception, ABC):
    """
    Base class for all custom exceptions.
    """

    def __init__(self, message: str | None = None):
        self.message = message or self.get_default_message()
        super().__init__(self.message)

    def get_default_message(self) -> str:
        """
        Return default error message.

        Returns
        -------
        str
            Default error message
        """
        return "error.unknown"

    def get_status_code(self) -> int:
        """
        Return HTTP status code for exception.

        Returns
        -------
        int
            HTTP status code
        """
        return 500


class BadRequestException(BaseCustomException):
    """Bad request exception (400)."""

    def get_status_code(self) -> int:
        return 400


class NotFoundException(BaseCustomException):
    """Not found exception (404)."""

    def get_status_code(self) -> int:
        return 404


class UpstreamException(BaseCustomException):
    """Failure of an external dependency (502)."""

    def get_status_code(self) -> int:
        return 502


class ChainNotSupportedException(BadRequestException):
    """Chain not supported exception."""

    def get_default_message(self) -> str:
        return "error.chain.not_supported"


class BlockRangeException(BadRequestException):
    """Requested block range is empty, inverted or too wide."""

    def get_default_message(self) -> str:
        return "error.block_range.invalid"


class TransactionNotFoundException(NotFoundException):
    """Transaction not found on chain."""

    def get_default_message(self) -> str:
        return "error.transaction.not_found"


class EventNotFoundException(NotFoundException):
    """Decoded event has no entry in the contract explanation."""

    def get_default_message(self) -> str:
        return "Event not found"


class RPCException(UpstreamException):
    """RPC error exception."""

    def get_default_message(self) -> str:
        return "error.rpc.failed"


class ABIFetchException(UpstreamException):
    """ABI fetch error exception."""

    def get_default_message(self) -> str:
        return "error.abi.fetch_failed"


class GenerationException(UpstreamException):
    """LLM generation error exception."""

    def get_default_message(self) -> str:
        return "error.generation.failed"
