"""Logging setup for processes that runs agent drivers.

Records from all loggers are put on a bounded gevent queue and written by a listener thread, so a slow console or log
file never delays the tick loop of an `AgentDriver`. When the queue is full records are dropped, and the number of
dropped records is reported with the first record the queue accepts again.

```python
listener = setup_logging('info', agent_id=configuration.agent_id, logfile='agent.log')
...
listener.stop()
```
"""

from __future__ import annotations

import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener
from re import sub
from socket import gethostname
from typing import Any, Optional, Union, cast

from gevent.queue import Full, Queue

logger = logging.getLogger(__name__)

QUEUE_HANDLER_NAME = 'queue'


def setup_logging(
    loglevel: Union[str, int],
    *,
    agent_id: Optional[str] = None,
    logfile: Optional[str] = None,
    maxsize: int = 10000,
) -> QueueListener:
    """Configure all loggers to go through the queue, and return the started listener."""
    if isinstance(loglevel, str):
        loglevel = loglevel.upper()

    origin = agent_id if agent_id is not None else sub(r'\..*', '', gethostname())
    writers = ['console']

    handlers: dict[str, Any] = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'agent',
        },
    }

    if logfile is not None:
        handlers['file'] = {
            'class': 'logging.FileHandler',
            'filename': logfile,
            'formatter': 'agent',
        }
        writers.append('file')

    handlers[QUEUE_HANDLER_NAME] = {
        'class': 'grizzly_scheduler.log.DiscardingQueueHandler',
        'handlers': writers,
        'queue': {
            '()': 'gevent.queue.Queue',
            'maxsize': maxsize,
        },
    }

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'agent': {
                'format': f'[%(asctime)s] {origin}/%(levelname)s/%(name)s: %(message)s',
            },
        },
        'handlers': handlers,
        'loggers': {
            'locust': {
                'handlers': [QUEUE_HANDLER_NAME],
                'level': loglevel,
                'propagate': False,
            },
        },
        'root': {
            'handlers': [QUEUE_HANDLER_NAME],
            'level': loglevel,
        },
    })

    handler = cast(QueueHandler, logging.getHandlerByName(QUEUE_HANDLER_NAME))
    listener = cast(QueueListener, handler.listener)

    if listener._thread is None:
        listener.start()

    return listener


class DiscardingQueueHandler(QueueHandler):
    """Drop records instead of blocking when the queue is full."""

    discarded: int

    def __init__(self, queue: Queue) -> None:
        super().__init__(queue)

        self.discarded = 0

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            super().enqueue(record)
        except Full:
            self.discarded += 1
            return

        if self.discarded > 0:
            count, self.discarded = self.discarded, 0
            logger.warning('discarded %d log records, log queue was full', count)
