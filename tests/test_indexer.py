"""Unit tests for the background scanner's modification-time diff."""

import os
from unittest.mock import MagicMock

from services.engine import Changed, Deleted
from services.indexer import BackgroundScanner
from services.vault import Vault


def _scanner(vault_dir):
    engine = MagicMock()
    engine.vault = Vault(str(vault_dir))
    scanner = BackgroundScanner()
    scanner.configure(engine, False, 30)
    return scanner, engine


def _events(engine):
    return [c.args[0] for c in engine.handle_event.call_args_list]


def test_first_scan_reports_every_document(vault_dir):
    (vault_dir / "a.md").write_text("a")
    scanner, engine = _scanner(vault_dir)
    assert scanner.scan() == {"changed": 1, "deleted": 0}
    assert _events(engine) == [Changed("a.md")]
    assert scanner.status["last_scanned"] is not None


def test_scan_reports_modified_and_deleted(vault_dir):
    a = vault_dir / "a.md"
    a.write_text("a")
    (vault_dir / "b.md").write_text("b")
    scanner, engine = _scanner(vault_dir)
    scanner.scan()
    engine.handle_event.reset_mock()

    os.utime(a, ns=(1_900_000_000_000_000_000, 1_900_000_000_000_000_000))
    (vault_dir / "b.md").unlink()
    assert scanner.scan() == {"changed": 1, "deleted": 1}
    assert _events(engine) == [Deleted("b.md"), Changed("a.md")]


def test_quiet_vault_emits_nothing(vault_dir):
    (vault_dir / "a.md").write_text("a")
    scanner, engine = _scanner(vault_dir)
    scanner.scan()
    engine.handle_event.reset_mock()
    assert scanner.scan() == {"changed": 0, "deleted": 0}
    engine.handle_event.assert_not_called()


def test_disabled_scanner_schedules_nothing(vault_dir):
    scanner, _engine = _scanner(vault_dir)
    assert scanner.status["enabled"] is False
    assert scanner._timer is None
