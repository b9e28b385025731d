"""
Run the API with uvicorn: ``python -m saveme``.
"""

from __future__ import annotations

import uvicorn

from saveme.app import create_app
from saveme.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
