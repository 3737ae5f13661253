# projectstore/__init__.py
from flask import Blueprint

projectstore_bp = Blueprint(
    'projectstore',
    __name__,
    template_folder='templates',
)

# Import routes and models to make them available
from . import routes, models
