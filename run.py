import os

from src.logger import logger


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    logger.info(
        "Starting build trigger webhook on {host}:{port}",
        host=host,
        port=port,
    )

    import uvicorn

    # A single worker: the retry backlog lives in process memory.
    uvicorn.run(
        app="src.main:app",
        host=host,
        port=port,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
