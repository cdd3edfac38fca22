"""
API Response Utilities - Standardized error handling and responses
"""

from flask import jsonify
from functools import wraps
from sqlalchemy.exc import SQLAlchemyError
import logging

from exceptions import (
    ActivityStateException,
    AuthenticationException,
    DatabaseException,
    DownloaderException,
    NotFoundException,
    ScraperException,
    ValidationException,
    VidStashException,
)

logger = logging.getLogger(__name__)


# API Error Codes
class ErrorCode:
    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    CONFLICT = "CONFLICT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


# Most specific first
EXCEPTION_STATUS = (
    (NotFoundException, ErrorCode.NOT_FOUND, 404),
    (ValidationException, ErrorCode.VALIDATION_ERROR, 400),
    (ActivityStateException, ErrorCode.CONFLICT, 409),
    (AuthenticationException, ErrorCode.UNAUTHORIZED, 401),
    (ScraperException, ErrorCode.UPSTREAM_ERROR, 502),
    (DownloaderException, ErrorCode.UPSTREAM_ERROR, 502),
    (DatabaseException, ErrorCode.INTERNAL_ERROR, 500),
)


def success_response(data=None, message=None, status_code=200):
    """
    Standard success response format for API endpoints
    """
    response = {"code": ErrorCode.SUCCESS, "success": True}

    if data is not None:
        response["data"] = data

    if message:
        response["message"] = message

    return jsonify(response), status_code


def error_response(error_code=ErrorCode.INTERNAL_ERROR, message=None, details=None, status_code=400, log_error=True):
    """
    Standard error response format for API endpoints
    """
    response = {"code": error_code, "success": False}

    if message:
        response["message"] = message
    elif error_code == ErrorCode.NOT_FOUND:
        response["message"] = "Resource not found"
    elif error_code == ErrorCode.VALIDATION_ERROR:
        response["message"] = "Invalid request parameters"
    elif error_code == ErrorCode.INTERNAL_ERROR:
        response["message"] = "An unexpected error occurred"
    elif error_code == ErrorCode.UNAUTHORIZED:
        response["message"] = "Authentication required"
    elif error_code == ErrorCode.CONFLICT:
        response["message"] = "Resource conflict"

    if details:
        response["details"] = details

    if log_error and error_code == ErrorCode.INTERNAL_ERROR:
        logger.error(f"{error_code}: {message} | Details: {details}")

    return jsonify(response), status_code


def exception_response(e):
    """Error envelope for a VidStashException"""
    for exception_type, error_code, status_code in EXCEPTION_STATUS:
        if isinstance(e, exception_type):
            return error_response(error_code, message=e.message, details=e.details, status_code=status_code)
    return error_response(ErrorCode.VALIDATION_ERROR, message=e.message, details=e.details, status_code=400)


def handle_api_errors(f):
    """
    Decorator to standardize error handling for API endpoints
    Automatically catches exceptions and returns consistent error responses
    """

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except VidStashException as e:
            return exception_response(e)
        except ValueError as e:
            return error_response(ErrorCode.VALIDATION_ERROR, message=str(e), status_code=400)
        except KeyError as e:
            return error_response(
                ErrorCode.VALIDATION_ERROR, message=f"Missing required parameter: {str(e)}", status_code=400
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error in {f.__name__}: {e}", exc_info=True)
            return error_response(ErrorCode.INTERNAL_ERROR, message="Database error", status_code=500, log_error=False)

    return wrapper


def paginated_response(items, total, page, per_page, has_more=None):
    """
    Standard paginated response format for list endpoints
    """
    response = {
        "code": ErrorCode.SUCCESS,
        "success": True,
        "data": items,
        "pagination": {
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": (total + per_page - 1) // per_page,
        },
    }

    if has_more is not None:
        response["pagination"]["has_more"] = has_more
    else:
        response["pagination"]["has_more"] = page * per_page < total

    response["pagination"]["next_page"] = page + 1 if response["pagination"]["has_more"] else None
    response["pagination"]["prev_page"] = page - 1 if page > 1 else None

    return jsonify(response), 200
