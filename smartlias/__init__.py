"""
SMARTLIAS: resident services portal for Barangay Lias.

Use `smartlias.app.create_app` to build the Flask application.
"""

__all__ = []
