import uvicorn

from .core.settings import settings


def main() -> None:
    uvicorn.run(
        "karma_api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
