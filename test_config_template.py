import unittest
from pathlib import Path

from provision_common import load_config

TEMPLATE_PATH = Path(__file__).resolve().parent / "config.ini.template"


class TestConfigTemplate(unittest.TestCase):
    def test_config_template_has_no_duplicate_keys(self):
        text = TEMPLATE_PATH.read_text(encoding="utf-8")

        section = None
        seen = {}
        duplicates = []

        for raw_line in text.splitlines():
            if raw_line[:1].isspace():
                continue
            line = raw_line.strip()
            if not line or line.startswith("#") or line.startswith(";"):
                continue
            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1].strip()
                seen.setdefault(section, set())
                continue
            if "=" not in line:
                continue
            key = line.split("=", 1)[0].strip()
            if section is None:
                section = ""
                seen.setdefault(section, set())
            if key in seen[section]:
                duplicates.append((section, key))
            else:
                seen[section].add(key)

        self.assertEqual(duplicates, [], f"Duplicate keys found: {duplicates}")

    def test_config_template_loads(self):
        cfg = load_config(TEMPLATE_PATH)
        self.assertTrue(cfg.connection.sysdba)
        self.assertEqual(cfg.connection.resolve_dsn(), "127.0.0.1:1521/ORCLCDB")
        self.assertEqual(cfg.granted_roles, ["CONNECT", "RESOURCE", "SELECT_CATALOG_ROLE"])
        self.assertIn("UNLIMITED TABLESPACE", cfg.system_privileges)
        self.assertEqual(cfg.identifier_caps, [128, 30])
        self.assertEqual(cfg.pdb["seed_dir_name"], "PDBSEED")


if __name__ == "__main__":
    unittest.main()
