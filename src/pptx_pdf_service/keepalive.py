"""Keep-alive pinger for hosts that idle inactive services.

Hits `GET /health` on the service every few minutes so a free-tier platform
does not spin it down. Run it anywhere that can keep a process or a cron job
alive; it shares nothing with the service except the health endpoint.
"""

import logging
import sys
import time

import requests
from dotenv import load_dotenv

from pptx_pdf_service.config import ConfigError, KeepAliveSettings, configure_logging


logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL_SEC = KeepAliveSettings.ping_interval_sec


def ping_service(base_url: str, session: requests.Session | None = None, timeout: float = 30) -> bool:
    """Return True when the service answers its health check with `ok`."""
    http = session or requests
    url = f"{base_url.rstrip('/')}/health"
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.error("Error pinging service at %s: %s", url, e)
        return False
    if resp.status_code == 200 and resp.text == "ok":
        logger.info("Service is alive")
        return True
    logger.warning("Unexpected response from %s: %s %s", url, resp.status_code, resp.text[:200])
    return False


def run_forever(base_url: str, interval: float = DEFAULT_PING_INTERVAL_SEC) -> None:
    logger.info("Starting keep-alive for %s, pinging every %g minutes", base_url, interval / 60)
    with requests.Session() as session:
        while True:
            ping_service(base_url, session=session)
            time.sleep(interval)


def main() -> None:
    load_dotenv()
    try:
        settings = KeepAliveSettings.from_env()
    except ConfigError as e:
        configure_logging()
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    configure_logging(settings.log_level)
    run_forever(settings.service_url, settings.ping_interval_sec)


if __name__ == "__main__":
    main()
