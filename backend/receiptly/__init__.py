"""Top-level application package for the receipt capture API.

This package contains everything required to run the FastAPI backend:
the database model, Pydantic schemas, the extraction pipeline services
(file validation, storage, AI extraction, schema validation, the
receipt repository, verification and chart aggregation) and the API
routers.

To run the API locally you can execute:

```bash
uvicorn receiptly.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000 and
automatically reload on code changes.  Configuration values come from
environment variables or a ``.env`` file at the project root; set
``DB_DEV_FALLBACK_SQLITE=true`` to use a local SQLite database.
"""

__all__: list[str] = []
