from flask import Blueprint

bp = Blueprint("reports", __name__)

# Import submodules so their routes register on the same bp
from . import routes  # noqa: E402,F401
