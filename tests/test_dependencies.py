# /tests/test_dependencies.py

import unittest
from unittest.mock import MagicMock, patch
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from api import dependencies


class TestSharedDriver(unittest.TestCase):

    def setUp(self):
        dependencies.get_driver.cache_clear()

    def tearDown(self):
        dependencies.get_driver.cache_clear()

    @patch("api.dependencies.create_driver")
    def test_requests_share_one_driver(self, mock_create_driver):
        driver = MagicMock()
        mock_create_driver.return_value = driver

        first = dependencies.get_db()
        second = dependencies.get_db()

        self.assertIsNot(first, second)
        self.assertIs(first._driver, driver)
        self.assertIs(second._driver, driver)
        mock_create_driver.assert_called_once()
        driver.close.assert_not_called()

    @patch("api.dependencies.create_driver")
    def test_close_driver_on_shutdown(self, mock_create_driver):
        driver = MagicMock()
        mock_create_driver.return_value = driver
        dependencies.get_db()

        dependencies.close_driver()
        dependencies.close_driver()

        driver.close.assert_called_once()
        self.assertEqual(dependencies.get_driver.cache_info().currsize, 0)


if __name__ == '__main__':
    unittest.main()
