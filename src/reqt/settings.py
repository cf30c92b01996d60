import os

from pydantic import BaseModel


class ReqtSettings(BaseModel):
    # Page size used when neither the connector nor the request sets one
    default_page_size: int = int(os.environ.get("REQT_DEFAULT_PAGE_SIZE", "100"))
    # Attempts per request when the server keeps answering 429
    max_attempts: int = int(os.environ.get("REQT_MAX_ATTEMPTS", "3"))
    # Exponential backoff parameters (seconds) when no Retry-After is sent
    backoff_base_delay: float = float(
        os.environ.get("REQT_BACKOFF_BASE_DELAY", "0.5")
    )
    backoff_max_delay: float = float(os.environ.get("REQT_BACKOFF_MAX_DELAY", "30"))
    # Tokens are refreshed this many seconds before they expire
    refresh_margin: float = float(os.environ.get("REQT_REFRESH_MARGIN", "30"))
    http_timeout: float = float(os.environ.get("REQT_HTTP_TIMEOUT", "30"))


REQT_SETTINGS = ReqtSettings()
