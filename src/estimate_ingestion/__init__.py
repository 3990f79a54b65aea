"""Estimate Ingestion - contractor estimate spreadsheet import pipeline."""

__version__ = "0.1.0"

from estimate_ingestion.api import app, create_app  # noqa: E402

__all__ = ["app", "create_app"]


def main() -> None:
    """Run the FastAPI server using uvicorn."""
    import uvicorn

    from estimate_ingestion.config import settings

    uvicorn.run(
        "estimate_ingestion.api:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
    )
