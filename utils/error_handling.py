from functools import wraps
from flask import jsonify
from utils.logger import log_exception


class ApiError(Exception):
    """An error that maps straight onto an HTTP JSON response."""

    def __init__(self, message: str, status: int = 500, details=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def to_response(self):
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return jsonify(body), self.status


class ValidationError(ApiError):
    def __init__(self, errors: list[dict]):
        super().__init__("Validation failed", 400, details=errors)
        self.errors = errors


def handle_errors(default_message: str = "An error occurred.", status: int = 500):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ApiError as err:
                return err.to_response()
            except Exception as err:
                log_exception(err, context=f"{func.__name__}:")
                return jsonify({"success": False, "error": default_message}), status
        return wrapper
    return decorator
