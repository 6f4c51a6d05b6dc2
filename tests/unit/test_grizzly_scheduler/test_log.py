"""Unit tests of grizzly_scheduler.log."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gevent.queue import Queue

from grizzly_scheduler.log import QUEUE_HANDLER_NAME, DiscardingQueueHandler, setup_logging

if TYPE_CHECKING:  # pragma: no cover
    from tests.fixtures import MockerFixture


def create_record(message: str) -> logging.LogRecord:
    return logging.LogRecord('test', logging.INFO, __file__, 1, message, None, None)


def test_setup_logging(mocker: MockerFixture) -> None:
    mocker.patch('grizzly_scheduler.log.gethostname', return_value='agent01.example.com')
    dict_config_mock = mocker.patch('logging.config.dictConfig')
    get_handler_mock = mocker.patch('logging.getHandlerByName')
    listener_mock = get_handler_mock.return_value.listener
    listener_mock._thread = None

    assert setup_logging('debug', maxsize=100) is listener_mock

    get_handler_mock.assert_called_once_with(QUEUE_HANDLER_NAME)
    listener_mock.start.assert_called_once_with()
    dict_config_mock.assert_called_once()
    config = dict_config_mock.call_args[0][0]

    assert config['formatters']['agent']['format'] == '[%(asctime)s] agent01/%(levelname)s/%(name)s: %(message)s'
    assert config['handlers'][QUEUE_HANDLER_NAME]['handlers'] == ['console']
    assert config['handlers'][QUEUE_HANDLER_NAME]['queue'] == {'()': 'gevent.queue.Queue', 'maxsize': 100}
    assert config['root'] == {'handlers': [QUEUE_HANDLER_NAME], 'level': 'DEBUG'}
    assert config['loggers']['locust']['level'] == 'DEBUG'
    assert 'file' not in config['handlers']

    dict_config_mock.reset_mock()
    listener_mock.reset_mock()
    listener_mock._thread = object()

    setup_logging(logging.WARNING, agent_id='ac001-0', logfile='scheduler.log')

    listener_mock.start.assert_not_called()
    config = dict_config_mock.call_args[0][0]

    assert config['formatters']['agent']['format'] == '[%(asctime)s] ac001-0/%(levelname)s/%(name)s: %(message)s'
    assert config['handlers']['file'] == {'class': 'logging.FileHandler', 'filename': 'scheduler.log', 'formatter': 'agent'}
    assert config['handlers'][QUEUE_HANDLER_NAME]['handlers'] == ['console', 'file']
    assert config['handlers'][QUEUE_HANDLER_NAME]['queue']['maxsize'] == 10000
    assert config['root']['level'] == logging.WARNING


class TestDiscardingQueueHandler:
    def test_enqueue(self, mocker: MockerFixture) -> None:
        logger_mock = mocker.patch('grizzly_scheduler.log.logger')
        queue: Queue = Queue(maxsize=1)
        handler = DiscardingQueueHandler(queue)

        handler.enqueue(create_record('first'))
        assert queue.qsize() == 1
        assert handler.discarded == 0

        handler.enqueue(create_record('second'))
        handler.enqueue(create_record('third'))

        assert queue.qsize() == 1
        assert handler.discarded == 2
        logger_mock.warning.assert_not_called()

        assert queue.get().msg == 'first'

        handler.enqueue(create_record('fourth'))

        logger_mock.warning.assert_called_once_with('discarded %d log records, log queue was full', 2)
        assert handler.discarded == 0
        assert queue.get().msg == 'fourth'
