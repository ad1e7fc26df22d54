"""HTTP entry points for the Last Wish service."""

from __future__ import annotations


def main() -> None:
    """Run the API server with uvicorn (console script: lastwish-api)."""
    import uvicorn

    from lastwish.config import API_HOST, API_PORT

    uvicorn.run("lastwish.api.app:app", host=API_HOST, port=API_PORT)
