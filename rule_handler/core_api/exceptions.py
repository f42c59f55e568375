# rule_handler/core_api/exceptions.py
class RuleHandlerError(Exception):
    """Base exception for rule handler errors."""

    def __init__(self, message, original_exception=None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class ApiError(RuleHandlerError):
    """Indicates an error interacting with the remote GraphQL API."""

    pass


class RuleStoreError(RuleHandlerError):
    """Indicates the enabled rules could not be fetched or understood."""

    pass


class AuthTokenError(RuleHandlerError):
    """Indicates an auth token could not be issued."""

    pass


class InvalidParameterError(RuleHandlerError):
    """Indicates an invalid parameter was provided to an API function."""

    pass
