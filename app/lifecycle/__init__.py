from flask import Blueprint

lifecycle_bp = Blueprint("lifecycle", __name__, url_prefix="/api")

from app.lifecycle import routes  # noqa: E402,F401
