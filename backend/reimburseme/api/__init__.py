"""API package.

This exposes router modules to simplify test imports like:
	from reimburseme.api.routes.ocr import router
"""

__all__ = [
	"routes",
]