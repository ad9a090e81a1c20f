"""
FastAPI Todo Backend package.

The application instance lives in ``todo_api.main`` (``from todo_api.main import app``).
"""

__version__ = "0.2.0"
