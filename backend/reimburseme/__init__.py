"""Top-level application package for the ReimburseMe backend.

This package contains the FastAPI API, the Dramatiq worker and the
OCR pipeline between them: the job dispatcher, the extraction worker,
the batch session aggregator, the single-file OCR cache path and CSV
export, plus database models and Pydantic schemas.

To run the API locally you can execute:

```bash
uvicorn reimburseme.api.main:app --reload --app-dir backend
```

and, in a second shell, the worker:

```bash
dramatiq reimburseme.worker --processes 1 --threads 4
```

Configuration is read from environment variables or a ``.env`` file at
the project root (see ``reimburseme.core.config``).
"""

__all__: list[str] = []
