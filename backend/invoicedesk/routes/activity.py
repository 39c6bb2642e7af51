# Overview: Flask API routes for the activity and login audit trail.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_CEO
from ..services import activity_service
from ..validation import ValidationError
from invoicedesk.time_utils import parse_iso_datetime, parse_range_end


activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")


def _int_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _date_range():
    try:
        start = parse_iso_datetime(request.args.get("start_date"))
        end = parse_range_end(request.args.get("end_date"))
    except ValueError:
        raise ValidationError("start_date and end_date must be ISO-8601 dates")
    return start, end


@activity_bp.get("")
@require_auth
@require_role(ROLE_CEO)
def list_activity_route():
    """
    All activity, newest first.

    Query params: user_id, start_date, end_date (inclusive)
    """
    try:
        start, end = _date_range()
        entries = activity_service.list_activity(user_id=_int_arg("user_id"), start=start, end=end)
        return jsonify([e.to_dict() for e in entries]), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list activity")
        return jsonify({"error": "Internal server error"}), 500


@activity_bp.get("/logins")
@require_auth
@require_role(ROLE_CEO)
def list_logins_route():
    try:
        entries = activity_service.list_logins(user_id=_int_arg("user_id"))
        return jsonify([e.to_dict() for e in entries]), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list login history")
        return jsonify({"error": "Internal server error"}), 500


@activity_bp.get("/mine")
@require_auth
def my_activity_route():
    try:
        start, end = _date_range()
        entries = activity_service.list_activity(user_id=g.current_user.id, start=start, end=end)
        return jsonify([e.to_dict() for e in entries]), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list own activity")
        return jsonify({"error": "Internal server error"}), 500


@activity_bp.get("/my-logins")
@require_auth
def my_logins_route():
    try:
        entries = activity_service.list_logins(user_id=g.current_user.id)
        return jsonify([e.to_dict() for e in entries]), 200
    except Exception:
        current_app.logger.exception("Failed to list own login history")
        return jsonify({"error": "Internal server error"}), 500
