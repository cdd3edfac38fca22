"""
VidStash - Custom Exceptions and Exception Handlers
"""
import structlog
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger('exceptions')


class VidStashException(Exception):
    """Base exception for VidStash"""
    def __init__(self, message: str, code: str = "VIDSTASH_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    @property
    def details(self):
        """Extra context for the error envelope, None when there is nothing to add"""
        return None


class DatabaseException(VidStashException):
    """Database-related exceptions"""
    def __init__(self, message: str):
        super().__init__(message, code="DATABASE_ERROR")
        logger.error(f"Database error: {message}")


class NotFoundException(VidStashException):
    """Unknown identifier"""
    def __init__(self, message: str):
        super().__init__(message, code="NOT_FOUND")
        logger.debug(f"Not found: {message}")


class ValidationException(VidStashException):
    """Validation-related exceptions; `field` names the offending request field"""
    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, code="VALIDATION_ERROR")
        logger.warning(f"Validation error: {message}")

    @property
    def details(self):
        return {'field': self.field} if self.field else None


class ActivityStateException(VidStashException):
    """Illegal activity transition, e.g. mutating a completed or failed record"""
    def __init__(self, message: str):
        super().__init__(message, code="INVALID_STATE")
        logger.warning(f"Activity state error: {message}")


class AuthenticationException(VidStashException):
    """Upstream site refused the session cookie"""
    def __init__(self, message: str = "authentication required - please set session cookie"):
        super().__init__(message, code="AUTH_ERROR")
        logger.warning(f"Authentication error: {message}")


class ScraperException(VidStashException):
    """Fetch or parse failure on a forum page"""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message, code="SCRAPER_ERROR")
        logger.error(f"Scraper error: {message}")

    @property
    def details(self):
        return {'status_code': self.status_code} if self.status_code else None


class DownloaderException(VidStashException):
    """JDownloader unreachable or refused a request"""
    def __init__(self, message: str):
        super().__init__(message, code="DOWNLOADER_ERROR")
        logger.error(f"Downloader error: {message}")


class ConfigurationException(VidStashException):
    """Missing or invalid startup configuration"""
    def __init__(self, message: str):
        super().__init__(message, code="CONFIG_ERROR")
        logger.critical(f"Configuration error: {message}")


def register_exception_handlers(app):
    """Errors raised outside `handle_api_errors` get the same envelope as the API routes"""
    from api_responses import ErrorCode, error_response, exception_response

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        code = ErrorCode.NOT_FOUND if e.code == 404 else e.name.upper().replace(' ', '_')
        return error_response(code, message=e.description, status_code=e.code, log_error=False)

    @app.errorhandler(VidStashException)
    def handle_vidstash_exception(e):
        return exception_response(e)

    @app.errorhandler(Exception)
    def handle_generic_exception(e):
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        return error_response(
            ErrorCode.INTERNAL_ERROR, message='An unexpected error occurred', status_code=500, log_error=False
        )
