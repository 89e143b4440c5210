import os
import tempfile
import unittest

from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path


class TempDbHelperTest(unittest.TestCase):
    def test_temp_db_create_and_cleanup(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        db_path = sandbox.db_path
        temp_dir = sandbox.temp_dir

        self.assertTrue(os.path.exists(temp_dir))
        self.assertTrue(os.path.realpath(db_path).startswith(os.path.realpath(tempfile.gettempdir())))

        db = sandbox.open_database()
        row = db.execute("SELECT COUNT(*) FROM vendedor_propostas").fetchone()
        self.assertEqual(int(row[0]), 0)

        sandbox.cleanup()
        self.assertFalse(os.path.exists(db_path))
        self.assertFalse(os.path.exists(temp_dir))

    def test_open_without_schema(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_bare")
        self.addCleanup(sandbox.cleanup)
        db = sandbox.open_database(with_schema=False)
        row = db.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='vendedor_propostas'").fetchone()
        self.assertIsNone(row)

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.getcwd(), "gestao_ebd_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)


if __name__ == "__main__":
    unittest.main()
