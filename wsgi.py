"""WSGI entrypoint for Flask CLI.

This file exists only to make running the app unambiguous.

Usage:
  flask --app wsgi run
  flask --app wsgi seed-demo
"""

import os

from smartlias.app import create_app
from smartlias.config import DevelopmentConfig, ProductionConfig

app = create_app(ProductionConfig if os.environ.get("FLASK_ENV") == "production" else DevelopmentConfig)
