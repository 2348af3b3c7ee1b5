import uvicorn

from hopper_server.settings import Settings


def main() -> None:
    settings = Settings()
    uvicorn.run(
        "hopper_server.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
        limit_concurrency=1000,
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
