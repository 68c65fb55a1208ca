import uvicorn

from rewardly_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "rewardly_api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
