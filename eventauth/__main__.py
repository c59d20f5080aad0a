"""Run the auth API with uvicorn: ``python -m eventauth`` or ``eventauth-api``."""

import uvicorn

from eventauth.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "eventauth.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
