from __future__ import annotations

from flask import Blueprint, jsonify

from quotedesk import ui_strings
from quotedesk.policies import current_actor
from quotedesk.workflow import status_display


meta_bp = Blueprint("meta", __name__, url_prefix="/api/meta")


@meta_bp.route("/workflow", methods=["GET"])
def workflow_bundle():
    current_actor()
    return jsonify({**ui_strings.frontend_bundle(), **status_display.frontend_bundle()})
