"""Error handlers for the application (JSON only)."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from offboard.core.case_provider import InvalidRequestError, RecordNotFoundError


def error_response(status: int, message: str):
    return jsonify({"status": "error", "error": message}), status


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(RecordNotFoundError)
    def record_not_found(error):
        return error_response(404, str(error))

    @app.errorhandler(InvalidRequestError)
    def invalid_request(error):
        return error_response(400, str(error))

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return error_response(400, getattr(error, "description", None) or "Bad Request")

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return error_response(404, "Resource not found")

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response(405, "Method not allowed")

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return error_response(500, "An unexpected error occurred")

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        if isinstance(error, HTTPException):
            return error
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return error_response(500, "An unexpected error occurred")
