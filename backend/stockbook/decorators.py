# Overview: Error-rendering decorator for API routes.

from functools import wraps
from flask import current_app, jsonify

from .services.errors import InventoryError
from .validation import ValidationError


def render_service_errors(log_message: str):
    """
    Turn service failures into JSON responses.

    - ValidationError -> 400 {"error": message}
    - NotFoundError -> 404 {"error": "<Entity> not found"}
    - other InventoryError -> status_code with to_dict()
    - PersistenceError and anything unexpected -> logged, generic 500
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return jsonify({"error": str(e)}), 400
            except InventoryError as e:
                if e.status_code >= 500:
                    current_app.logger.exception(log_message)
                    return jsonify({"error": "Internal server error"}), e.status_code
                if e.status_code == 404:
                    return jsonify({"error": e.error}), 404
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception(log_message)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator
