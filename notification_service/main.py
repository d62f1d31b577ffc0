"""``notification-service`` console script: serve the API with uvicorn."""

from __future__ import annotations

import uvicorn

from notification_service.core.settings import get_app_settings, get_logging_settings


def main() -> None:
    app_settings = get_app_settings()
    uvicorn.run(
        "notification_service.app.main:app",
        host=app_settings.host,
        port=app_settings.port,
        reload=app_settings.debug,
        access_log=app_settings.debug,
        log_level=get_logging_settings().level.lower(),
        # Application logging is configured in the lifespan hook
        log_config=None,
    )


if __name__ == "__main__":
    main()
