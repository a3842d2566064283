#tests/test_cli.py

"""Test the installer command line."""

import os
import tarfile

import pytest

from deployment_engine.run_installer import build_parser, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("VERISCOPE_SERVICE_HOST", "VERISCOPE_COMMON_NAME", "VERISCOPE_TARGET", "APP_ENV", "COMPOSE_FILE"):
        monkeypatch.delenv(var, raising=False)


class TestCli:
    """Test argument handling and exit codes."""

    def test_list_phases(self, project_root, capsys):
        """Test phases are printed in order."""
        exit_code = main(["--project-root", str(project_root), "list-phases"])

        output = capsys.readouterr().out
        assert exit_code == 0
        assert output.index("verify-dependencies") < output.index("finalize")

    def test_missing_configuration(self, tmp_path):
        """Test unset deployment attributes exit non-zero."""
        assert main(["--project-root", str(tmp_path), "list-phases"]) == 1

    def test_destroy_requires_phrase(self, project_root):
        """Test a wrong confirmation phrase aborts destroy."""
        assert main(["--project-root", str(project_root), "destroy", "--scope", "all", "--confirm", "yes"]) == 1

    def test_reset_requires_yes(self, project_root):
        """Test reset refuses to run unconfirmed."""
        assert main(["--project-root", str(project_root), "reset-volumes"]) == 1

    def test_unknown_scope_rejected(self):
        """Test argparse rejects unknown destroy scopes."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["destroy", "--scope", "everything"])


class TestBackupCommands:
    """Test backup subcommands refuse destructive work without confirmation."""

    @pytest.fixture
    def env_archive(self, project_root):
        path = project_root / "backups" / "app-files-20261016-120000.tar.gz"
        path.parent.mkdir()
        with tarfile.open(path, "w:gz") as tar:
            tar.add(project_root / ".env", arcname=".env")
        return path

    def test_restore_requires_yes(self, project_root, env_archive):
        """Test an unconfirmed restore exits 1 and leaves .env alone."""
        original = (project_root / ".env").read_text(encoding="utf-8")

        assert main(["--project-root", str(project_root), "restore-files", str(env_archive)]) == 1
        assert (project_root / ".env").read_text(encoding="utf-8") == original
        assert (project_root / "backups" / "backup-restore.log").is_file()

    def test_clean_requires_phrase(self, project_root, env_archive):
        """Test cleanup without --confirm DELETE keeps old backups."""
        os.utime(env_archive, (0, 0))

        assert main(["--project-root", str(project_root), "clean-backups", "--days", "1"]) == 1
        assert env_archive.exists()

    def test_clean_with_phrase(self, project_root, env_archive):
        """Test cleanup deletes old backups once confirmed."""
        os.utime(env_archive, (0, 0))

        assert main(["--project-root", str(project_root), "clean-backups", "--days", "1", "--confirm", "DELETE"]) == 0
        assert not env_archive.exists()

    def test_list_backups(self, project_root, env_archive, capsys):
        """Test backups are listed by name."""
        assert main(["--project-root", str(project_root), "list-backups"]) == 0
        assert env_archive.name in capsys.readouterr().out

    def test_regenerate_key_requires_yes(self, project_root):
        """Test the encryption key is never regenerated unconfirmed."""
        assert main(["--project-root", str(project_root), "regenerate-encryption-key"]) == 1
