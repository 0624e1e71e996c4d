"""Entry point for running the query runner API directly"""
import uvicorn

from queryrunner.config import Settings


def main():
    settings = Settings()
    uvicorn.run(
        "queryrunner.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
