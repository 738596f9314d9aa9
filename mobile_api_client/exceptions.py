NETWORK_ERROR_MESSAGE = "Unable to connect. Please check your internet connection."
AUTH_ERROR_MESSAGE = "Your session has expired. Please log in again."


class ApiClientError(Exception):
    """Base exception for ApiClient errors"""
    def __init__(self, message: str, error_code: int = None):
        self.error_code = error_code
        super().__init__(message)

class NetworkError(ApiClientError):
    """No response was received, or the client is offline with nothing to fall back on"""
    def __init__(self, message: str = NETWORK_ERROR_MESSAGE, cause: Exception = None, attempts: int = 0):
        self.cause = cause
        self.attempts = attempts
        super().__init__(message)

class RequestDiscardedError(NetworkError):
    """A queued request was dropped before it could be sent"""
    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"Queued request {method} {path} was discarded")

class AuthError(ApiClientError):
    """Credentials could not be refreshed; the session has ended"""
    def __init__(self, message: str = AUTH_ERROR_MESSAGE, cause: Exception = None):
        self.cause = cause
        super().__init__(message, error_code=401)

class ServerError(ApiClientError):
    """The service answered with a non-success status"""
    def __init__(self, status_code: int, body: str = None, method: str = None, path: str = None):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        error_message = f"Server returned {status_code}"
        if method and path:
            error_message += f" for {method} {path}"
        if body:
            error_message += f": {body}"
        super().__init__(error_message, error_code=status_code)

class CacheError(ApiClientError):
    """A persisted cache entry could not be decoded"""
    def __init__(self, key: str, reason: str = None):
        self.key = key
        self.reason = reason
        error_message = f"Unreadable cache entry '{key}'"
        if reason:
            error_message += f": {reason}"
        super().__init__(error_message)

class StorageError(ApiClientError):
    """The persistent store backend failed"""
    def __init__(self, operation: str, error_details: str = None):
        self.operation = operation
        self.error_details = error_details
        error_message = f"Storage operation '{operation}' failed"
        if error_details:
            error_message += f": {error_details}"
        super().__init__(error_message)

class InvalidConfigurationError(ApiClientError):
    """Invalid ApiClient configuration"""
    def __init__(self, config_key: str, config_value: str, message: str = None):
        self.config_key = config_key
        self.config_value = config_value
        error_message = message or f"Invalid configuration for key '{config_key}' with value '{config_value}'"
        super().__init__(error_message)
