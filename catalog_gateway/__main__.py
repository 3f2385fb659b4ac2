"""Run the gateway with ``python -m catalog_gateway``."""

import uvicorn

from .config import get_settings


def main() -> None:
    uvicorn.run(
        "catalog_gateway.main:app",
        host="0.0.0.0",
        port=get_settings().port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
