from __future__ import annotations

import uvicorn

from video_feed.config import load_settings


def main() -> None:
    settings = load_settings()
    # The app lifespan owns logging setup and the request middleware logs each request.
    uvicorn.run(
        "video_feed.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
