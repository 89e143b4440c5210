import os
import shutil
import sqlite3
import tempfile
import unittest
import uuid
from pathlib import Path

from gestao_ebd import create_app
from gestao_ebd.config import Config
from gestao_ebd.db import close_db
from gestao_ebd.db_migrations import build_alembic_config, to_sqlalchemy_url
from tests.helpers.fakes import build_test_services


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class SqlalchemyUrlTest(unittest.TestCase):
    def test_paths_and_urls(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertEqual(to_sqlalchemy_url("postgresql://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertEqual(to_sqlalchemy_url("sqlite:///tmp/x.db"), "sqlite:///tmp/x.db")
        local = to_sqlalchemy_url("database/gestao_ebd.db")
        self.assertTrue(local.startswith("sqlite:///"))
        self.assertTrue(local.endswith("/database/gestao_ebd.db"))
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        base_tmp = tempfile.gettempdir()
        self._tmpdir_path = os.path.join(base_tmp, f"gestao_ebd_migrations_test_{uuid.uuid4().hex}")
        os.makedirs(self._tmpdir_path, exist_ok=True)
        self.db_path = os.path.join(self._tmpdir_path, "gestao_ebd_test.db")
        self._prev_env = {name: os.environ.get(name) for name in ("FLASK_ENV", "DATABASE_URL", "DB_PATH")}
        os.environ["FLASK_ENV"] = "development"
        os.environ.pop("DATABASE_URL", None)
        os.environ.pop("DB_PATH", None)

    def tearDown(self) -> None:
        for name, value in self._prev_env.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
        shutil.rmtree(self._tmpdir_path, ignore_errors=True)

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        db_path = self.db_path

        class TempConfig(Config):
            DATABASE_DIR = self._tmpdir_path
            DB_PATH = db_path
            TESTING = testing
            DB_AUTO_INIT = db_auto_init
            LOG_JSON = False

        return create_app(TempConfig, services=build_test_services())

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "vendedor_propostas"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        self.assertTrue(_table_exists(self.db_path, "vendedor_propostas"))
        self.assertTrue(_table_exists(self.db_path, "ebd_onboarding_progress"))

    def test_alembic_config_points_at_app_database(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        alembic_cfg = build_alembic_config(app)
        self.assertEqual(alembic_cfg.get_main_option("sqlalchemy.url"), to_sqlalchemy_url(self.db_path))
        self.assertTrue(alembic_cfg.get_main_option("script_location").endswith("migrations"))
        self.assertTrue(Path(alembic_cfg.get_main_option("script_location")).is_dir())

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "vendedor_propostas_parcelas"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "vendedor_propostas_parcelas"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "vendedor_propostas_parcelas"))


if __name__ == "__main__":
    unittest.main()
