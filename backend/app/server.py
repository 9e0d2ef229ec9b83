"""Run the tree backend with uvicorn.

Equivalent to ``uvicorn app.main:create_app --factory`` with the host, port
and log level taken from the environment.
"""

from __future__ import annotations

import uvicorn

from app import settings


def main() -> None:
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL,
        workers=1,
    )


if __name__ == "__main__":
    main()
