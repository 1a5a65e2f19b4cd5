import logging
import signal
import threading

from scrobbler import config
from scrobbler.notifier import from_env as webhook_notifier_from_env
from scrobbler.service import ScrobblerService

log = logging.getLogger("scrobbler")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )
    # requests/urllib3 are chatty at DEBUG and would echo request bodies
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def main():
    settings = config.from_env()
    setup_logging(settings.effective_log_level)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    service = ScrobblerService(settings, notifier=webhook_notifier_from_env())
    log.info("Data dir: %s | Drain interval: %ss | Max retries: %s",
             settings.data_dir, settings.drain_interval, settings.max_retries or "unlimited")

    # Playback events come from the host player through service.tracker
    with service:
        try:
            while not stop.wait(1):
                pass
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
