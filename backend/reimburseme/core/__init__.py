"""Infrastructure shared by the API and the OCR worker.

Settings, database engines, the Dramatiq broker and actors, auth and
Sentry wiring live here (e.g. `from reimburseme.core import settings`).
"""

from .config import settings  # noqa: F401
