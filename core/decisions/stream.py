# bouncer/core/decisions/stream.py
import threading
import logging
from typing import Callable, List, Optional

from schemas.decision import Decision
from utils.exceptions import BouncerError, DecisionStreamError
from .lapi import LapiClient, to_decisions

logger = logging.getLogger(f"bouncer.{__name__}")


class DecisionStream:
    """
    Polls the LAPI stream endpoint on its own thread and hands each non-empty
    batch to a sink. It never touches bouncer state itself.
    """
    def __init__(self,
                 client: LapiClient,
                 interval: float = 5.0,
                 max_consecutive_failures: int = 0,
                 cancel_event: Optional[threading.Event] = None):
        self._client = client
        self.interval = interval
        self.max_consecutive_failures = max_consecutive_failures # 0 means retry forever
        self.cancel_event = cancel_event or threading.Event()
        self.batches_delivered = 0

    def run(self, sink: Callable[[List[Decision]], None]) -> None:
        """
        Polls until cancelled. Returns normally only on cancellation.
        Raises:
            DecisionStreamError: When consecutive failures exceed the configured limit.
        """
        startup = True
        failures = 0
        logger.info(f"Decision stream started (interval: {self.interval}s)")
        while not self.cancel_event.is_set():
            try:
                response = self._client.fetch(startup=startup)
            except BouncerError as e:
                failures += 1
                logger.error(f"Decision stream request failed ({failures} consecutive): {e}")
                if self.max_consecutive_failures and failures >= self.max_consecutive_failures:
                    raise DecisionStreamError(
                        override_message=f"Decision stream halted after {failures} consecutive failures",
                        details={"last_error": str(e)},
                    ) from e
            else:
                startup = False
                failures = 0
                decisions = to_decisions(response)
                if decisions:
                    logger.debug(f"Received {len(decisions)} decision(s) from stream")
                    sink(decisions)
                    self.batches_delivered += 1

            if self.cancel_event.wait(self.interval):
                break
        logger.info("Decision stream stopped.")
