#!/usr/bin/env python3
# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Test suite for logging helpers"""

import logging
import unittest
from pyppp.logger import (
    LogLevel, ColoredFormatter, StationLoggerAdapter, LogContext, LoggerConfig,
    setup_logger, get_logger
)


class TestLogger(unittest.TestCase):
    """Test logger setup and adapters"""

    def tearDown(self):
        for name in ('pyppp.test', 'pyppp.test.module'):
            log = logging.getLogger(name)
            log.handlers = []
            log.setLevel(logging.NOTSET)

    def test_setup_logger(self):
        log = setup_logger('pyppp.test', level='DEBUG', console=True)
        self.assertEqual(log.level, logging.DEBUG)
        self.assertEqual(len(log.handlers), 1)
        self.assertIsInstance(log.handlers[0].formatter, ColoredFormatter)
        # Calling again replaces the handlers
        setup_logger('pyppp.test', level='INFO', console=True)
        self.assertEqual(len(log.handlers), 1)

    def test_unknown_level(self):
        with self.assertRaises(ValueError):
            setup_logger('pyppp.test', level='VERBOSE')

    def test_trace_level(self):
        self.assertEqual(logging.getLevelName(LogLevel.TRACE.value), 'TRACE')

    def test_station_adapter(self):
        adapter = StationLoggerAdapter(get_logger('pyppp.test'), 'EBRE')
        with self.assertLogs('pyppp.test', level='WARNING') as cm:
            adapter.warning('epoch rejected')
        self.assertEqual(cm.output, ['WARNING:pyppp.test:[EBRE] epoch rejected'])

    def test_colored_formatter_keeps_record(self):
        record = logging.LogRecord('pyppp.test', logging.INFO, __file__, 1, 'msg', None, None)
        text = ColoredFormatter('%(levelname)s %(message)s').format(record)
        self.assertIn('msg', text)
        self.assertEqual(record.levelname, 'INFO')

    def test_log_context(self):
        log = setup_logger('pyppp.test', level='INFO', console=False)
        with LogContext(log, 'DEBUG'):
            self.assertEqual(log.level, logging.DEBUG)
        self.assertEqual(log.level, logging.INFO)

    def test_logger_config(self):
        config = LoggerConfig()
        config.configure_from_dict({
            'default_level': 'WARNING',
            'console': False,
            'module_levels': {'pyppp.test.module': 'DEBUG'},
        })
        self.assertEqual(config.get_level_for_module('pyppp.test.module'), 'DEBUG')
        self.assertEqual(config.get_level_for_module('pyppp.other'), 'WARNING')
        config.set_module_level('pyppp.test.module', 'ERROR')
        self.assertEqual(logging.getLogger('pyppp.test.module').level, logging.ERROR)


if __name__ == '__main__':
    unittest.main()
