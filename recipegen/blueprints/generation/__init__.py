from flask import Blueprint
from recipegen.blueprints.auth import check_admin

generation_bp = Blueprint("generation", __name__)
generation_bp.before_request(check_admin)

from recipegen.blueprints.generation import views  # noqa: F401, E402
