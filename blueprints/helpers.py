from functools import wraps
from flask import jsonify, request
from flask_login import current_user

from commission.exceptions import ValidationError


def admin_required(f):
    """
    Restrict a route to admins.
    - 401 when nobody is logged in.
    - 403 when the logged-in user is not an admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Unauthorized"}), 401
        if not current_user.is_admin:
            return jsonify({"error": "Forbidden"}), 403
        return f(*args, **kwargs)

    return decorated_function


def json_body():
    """The request's JSON object, or a ValidationError if there is none."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid or missing JSON body")
    return data
