from flask import Blueprint
from recipegen.blueprints.auth import check_admin

review_bp = Blueprint("review", __name__)
review_bp.before_request(check_admin)

from recipegen.blueprints.review import views  # noqa: F401, E402
