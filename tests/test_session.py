"""Tests for app/session.py."""

from nvme_migrate.app.session import MigrationSession
from nvme_migrate.domain.models import OutcomeKind, SessionOutcome


class TestMigrationSession:
    def test_advance_records_steps(self):
        session = MigrationSession(run_id="migrate-1", new_root="/mnt/newroot")
        assert session.current_step is None

        assert session.advance("preflight") == 1
        assert session.advance("detect") == 2

        assert session.steps == ["preflight", "detect"]
        assert session.current_step == "detect"

    def test_first_outcome_wins(self):
        """Test a late outcome does not overwrite the recorded one."""
        session = MigrationSession(run_id="migrate-1", new_root="/mnt/newroot")

        session.finish(SessionOutcome.failed("copy failed"))
        result = session.finish(SessionOutcome.success())

        assert result.kind is OutcomeKind.FAILED
        assert session.outcome.reason == "copy failed"

    def test_lvm_flags_start_clear(self, bios_session):
        assert bios_session.vg_extended is False
        assert bios_session.relocation_done is False
