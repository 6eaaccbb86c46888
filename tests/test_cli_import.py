"""Regression tests for running the maintenance commands without the web stack."""

from __future__ import annotations

import importlib
import os
import sys
import tempfile
import types
import unittest
from pathlib import Path
from unittest import mock

WEB_MODULES = ("embedcal.service", "embedcal.sessions", "embedcal.security", "embedcal.dependencies")


class CLIImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._clear_app_modules()
        self._fastapi: types.ModuleType | None = sys.modules.pop("fastapi", None)
        sys.modules["fastapi"] = None

    def tearDown(self) -> None:
        sys.modules.pop("fastapi", None)
        if self._fastapi is not None:
            sys.modules["fastapi"] = self._fastapi
        self._clear_app_modules()

    @staticmethod
    def _clear_app_modules() -> None:
        for name in [m for m in list(sys.modules.keys()) if m in ("embedcal", "main") or m.startswith("embedcal.")]:
            sys.modules.pop(name, None)

    def test_package_import_leaves_http_layer_unloaded(self) -> None:
        package = importlib.import_module("embedcal")
        self.assertTrue(hasattr(package, "Database"))
        self.assertTrue(callable(package.create_app))

        for name in WEB_MODULES:
            self.assertNotIn(name, sys.modules)

    def test_init_db_command_runs_without_fastapi(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "cli.sqlite3"
            env = {"EMBEDCAL_DB_PATH": str(db_path), "EMBEDCAL_ADMIN_USERNAME": "cli-admin"}
            with mock.patch.dict(os.environ, env):
                cli = importlib.import_module("main")
                with mock.patch("builtins.print"):
                    self.assertEqual(cli.main(["init-db"]), 0)

            for name in WEB_MODULES:
                self.assertNotIn(name, sys.modules)

            database_module = sys.modules["embedcal.database"]
            database = database_module.Database(db_path)
            try:
                users = database.list_users()
            finally:
                database.close()
            self.assertEqual([(user.username, user.is_admin) for user in users], [("cli-admin", True)])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
