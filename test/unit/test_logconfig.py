import logging
import unittest

from scanfleet.app_config import AppConfig
from scanfleet.logconfig import (
    configure_root_logger,
    get_log_level_from_config,
    get_module_logger,
)


class TestLogConfig(unittest.TestCase):

    def test_module_logger_namespaced_and_cached(self):
        log = get_module_logger("fleet_manager")
        self.assertEqual(log.name, "scanfleet.fleet_manager")
        self.assertIs(get_module_logger("fleet_manager"), log)

    def test_level_defaults_to_info(self):
        self.assertEqual(get_log_level_from_config(None), logging.INFO)

    def test_level_from_flat_dict(self):
        self.assertEqual(get_log_level_from_config({"_debug": True}), logging.DEBUG)
        self.assertEqual(get_log_level_from_config({"__loglevel": "warning"}),
                         logging.WARNING)
        self.assertEqual(get_log_level_from_config({"__loglevel": "bogus"}),
                         logging.INFO)

    def test_level_from_app_config(self):
        cfg = AppConfig()
        cfg.api.log_level = "ERROR"
        self.assertEqual(get_log_level_from_config(cfg), logging.ERROR)
        cfg.core.debug = True
        self.assertEqual(get_log_level_from_config(cfg), logging.DEBUG)

    def test_configure_sets_package_level(self):
        configure_root_logger(level=logging.WARNING)
        self.assertEqual(logging.getLogger("scanfleet").level, logging.WARNING)
        self.assertEqual(logging.getLogger("urllib3").level, logging.WARNING)
        configure_root_logger(debug=True)
        self.assertEqual(logging.getLogger("scanfleet").level, logging.DEBUG)

    def test_api_modules_use_module_loggers(self):
        from scanfleet.api.routers import scan
        self.assertIs(scan.log, get_module_logger("api.scan"))
        self.assertEqual(scan.log.name, "scanfleet.api.scan")
