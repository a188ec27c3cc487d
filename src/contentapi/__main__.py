import os

import uvicorn


def _port() -> int:
    raw = os.getenv("CONTENTAPI_PORT") or os.getenv("PORT") or "8000"
    try:
        port = int(raw)
    except ValueError:
        raise SystemExit(f"contentapi: invalid port {raw!r}") from None
    if not 0 < port < 65536:
        raise SystemExit(f"contentapi: port {port} is out of range")
    return port


def main() -> int:
    # log_config=None leaves uvicorn's loggers to the structlog setup in contentapi.app.
    uvicorn.run(
        "contentapi.app:app",
        host=os.getenv("CONTENTAPI_HOST", "0.0.0.0"),
        port=_port(),
        log_level=os.getenv("CONTENTAPI_LOG_LEVEL", "INFO").strip().lower(),
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
