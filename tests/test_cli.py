"""
Tests for the hdasctl command line interface.
"""

import json
import os
import sys
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hdas.attribution import PackageManager
from hdas.cli import hdasctl
from hdas.cli.hdasctl import build_parser, main
from hdas.store import AttributionStore


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep the CLI from reconfiguring root logging during tests."""
    with patch.object(hdasctl, 'configure_from_environment'):
        yield


@pytest.fixture
def user_env(config_file, home, monkeypatch):
    """HOME points at the fake home, HDAS_CONFIG at the temp config."""
    monkeypatch.setenv('HOME', str(home))
    return config_file


class TestParser:
    """Tests for argument parsing."""

    def test_global_flags(self):
        """--json and --verbose precede the subcommand."""
        args = build_parser().parse_args(['--json', '--verbose', 'classify', '/etc/x'])
        assert args.json
        assert args.verbose
        assert args.paths == ['/etc/x']

    def test_no_command_prints_help(self, capsys):
        """Running without a command shows help and succeeds."""
        assert main([]) == 0
        assert "hdasctl" in capsys.readouterr().out


class TestClassify:
    """Tests for 'hdasctl classify'."""

    def test_text_output(self, user_env, capsys):
        """Each path gets a verdict; exit 1 if any is not emitted."""
        code = main(['classify', '/etc/passwd', '/home/a/.configbackup', '/var/lib/hdas/.cache/x'])
        out = capsys.readouterr().out.splitlines()
        assert code == 1
        assert out[0].split() == ['EMIT', '/etc/passwd']
        assert out[1].split() == ['IGNORED', '/home/a/.configbackup']
        assert out[2].split() == ['EXCLUDED', '/var/lib/hdas/.cache/x']

    def test_json_output(self, user_env, capsys):
        """--json prints one object per path."""
        code = main(['--json', 'classify', '/home/alice/.config/app.toml'])
        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data == [{
            'path': '/home/alice/.config/app.toml',
            'interesting': True,
            'excluded': False,
            'emit': True,
        }]

    def test_config_error(self, user_env, capsys):
        """A broken config exits with 2."""
        user_env.parent.mkdir(parents=True)
        user_env.write_text("scan_bound: wide\n")
        assert main(['classify', '/etc/x']) == 2
        assert "Configuration error" in capsys.readouterr().err


class TestExplain:
    """Tests for 'hdasctl explain'."""

    def test_monitored(self, user_env, home, capsys):
        """A monitored path shows its tracked form."""
        assert main(['explain', '~/.cache/pip/http/x']) == 0
        out = capsys.readouterr().out
        assert f"Tracked:   {home}/.cache/pip" in out

    def test_unmonitored_json(self, user_env, capsys):
        """Unmonitored paths exit 1."""
        assert main(['--json', 'explain', '/usr/bin/vim']) == 1
        assert json.loads(capsys.readouterr().out)['monitored'] is False


class TestConfigCommands:
    """Tests for 'hdasctl config ...'."""

    def test_init_once(self, user_env, capsys):
        """init creates the file and refuses to overwrite without --force."""
        assert main(['config', 'init']) == 0
        assert user_env.exists()
        assert main(['config', 'init']) == 1
        assert main(['config', 'init', '--force']) == 0

    def test_validate(self, user_env, capsys):
        """The default config validates."""
        main(['config', 'init'])
        capsys.readouterr()
        assert main(['config', 'validate']) == 0
        assert "Configuration is valid" in capsys.readouterr().out

    def test_validate_errors(self, user_env, capsys):
        """Lint errors make validate exit 1."""
        user_env.parent.mkdir(parents=True)
        user_env.write_text("perf_page_count: 48\n")
        assert main(['--json', 'config', 'validate']) == 1
        assert json.loads(capsys.readouterr().out)['valid'] is False

    def test_show_json(self, user_env, capsys):
        """show --json includes the compiled rules."""
        assert main(['--json', 'config', 'show']) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['path'] == str(user_env)
        assert data['rules']['prefixes'] == ['/etc/']

    def test_explicit_config_path(self, temp_dir, capsys):
        """--config overrides the default location."""
        path = temp_dir / "custom.yaml"
        path.write_text("monitored_dirs: [.steam]\n")
        assert main(['--config', str(path), 'config', 'show']) == 0
        assert ".steam" in capsys.readouterr().out


class TestBpfAndMonitor:
    """Tests for 'hdasctl bpf' and 'hdasctl monitor'."""

    def test_bpf(self, user_env, capsys):
        """bpf prints the generated program."""
        assert main(['bpf']) == 0
        assert "TRACEPOINT_PROBE(syscalls, sys_enter_openat)" in capsys.readouterr().out

    def test_monitor_requires_root(self, user_env, capsys):
        """monitor refuses to run unprivileged."""
        with patch.object(hdasctl.os, 'geteuid', return_value=1000):
            assert main(['monitor']) == 1
        assert "root" in capsys.readouterr().err


# ===========================================================================
# Database Commands
# ===========================================================================

@pytest.fixture
def seeded(user_env, home, db_file):
    """A database with an existing and a vanished path."""
    (home / '.cache' / 'mozilla').mkdir()
    with AttributionStore(db_file) as s:
        s.record_access(str(home / '.cache' / 'mozilla'), 'firefox', 'firefox')
        s.record_access(str(home / '.cache' / 'pip'), 'python-pip', 'pip')
        s.record_access(str(home / '.config' / 'gone'), 'oldpkg', 'oldpkg')
        s.record_access(str(home / '.cache' / 'mozilla'), 'gtk3', 'gedit')
    return home


class TestDatabaseCommands:
    """Tests for list/query/package/dir/prune/stats."""

    def test_list_empty(self, user_env, db_file, capsys):
        assert main(['list']) == 0
        assert "No files cataloged yet" in capsys.readouterr().out

    def test_list(self, seeded, capsys):
        """Existing paths are ticked; other accessors get a second line."""
        assert main(['list']) == 0
        out = capsys.readouterr().out
        assert "(3 total)" in out
        assert f"[✓] {seeded}/.cache/mozilla (firefox)" in out
        assert f"[✗] {seeded}/.cache/pip (python-pip)" in out
        assert "└─ last accessed by gtk3 (gedit)" in out

    def test_package_json(self, seeded, capsys):
        assert main(['--json', 'package', 'firefox']) == 0
        [record] = json.loads(capsys.readouterr().out)
        assert record['path'] == f"{seeded}/.cache/mozilla"
        assert record['last_accessed_by_package'] == 'gtk3'
        assert record['exists'] is True

    def test_package_unknown(self, seeded, capsys):
        assert main(['package', 'nothing']) == 0
        assert "No files found for package: nothing" in capsys.readouterr().out

    def test_query(self, seeded, capsys):
        assert main(['--json', 'query', 'pip']) == 0
        assert [r['path'] for r in json.loads(capsys.readouterr().out)] == [f"{seeded}/.cache/pip"]

    def test_dir_home_relative(self, seeded, capsys):
        """dir accepts ~/ and home-relative paths."""
        assert main(['--json', 'dir', '~/.cache']) == 0
        paths = [r['path'] for r in json.loads(capsys.readouterr().out)]
        assert paths == [f"{seeded}/.cache/mozilla", f"{seeded}/.cache/pip"]

        assert main(['--json', 'dir', '.config']) == 0
        assert [r['path'] for r in json.loads(capsys.readouterr().out)] == [f"{seeded}/.config/gone"]

    def test_prune(self, seeded, capsys):
        assert main(['prune']) == 0
        assert "Pruned 2 deleted file(s)" in capsys.readouterr().out
        assert main(['--json', 'prune']) == 0
        assert json.loads(capsys.readouterr().out) == {'pruned': 0}

    def test_stats(self, seeded, db_file, capsys):
        assert main(['--json', 'stats']) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats['database_path'] == str(db_file)
        assert stats['files_tracked'] == 3
        assert stats['packages_seen'] == 3
        assert stats['database_size_bytes'] > 0
        assert stats['tracking_depth'] == 1

    def test_explicit_db(self, user_env, temp_dir, capsys):
        """--db overrides HDAS_DB."""
        other = temp_dir / "other.db"
        with AttributionStore(other) as s:
            s.record_access('/home/alice/.steam', 'steam', 'steam')
        assert main(['--db', str(other), '--json', 'list']) == 0
        assert json.loads(capsys.readouterr().out)[0]['path'] == '/home/alice/.steam'

    def test_unopenable_db(self, user_env, temp_dir, capsys):
        (temp_dir / "file").write_text("x")
        assert main(['--db', str(temp_dir / "file" / "x.db"), 'list']) == 2
        assert "Database error" in capsys.readouterr().err


class TestOrphans:
    """Tests for 'hdasctl orphans'."""

    def test_orphans_json(self, seeded, capsys):
        """Creators missing from the installed list are reported with their files."""
        with patch.object(PackageManager, 'detect', return_value=PackageManager.PACMAN), \
                patch.object(PackageManager, 'list_installed', return_value={'firefox', 'python-pip'}):
            assert main(['--json', 'orphans']) == 0
        assert json.loads(capsys.readouterr().out) == [{
            'package': 'oldpkg',
            'files': [{'path': f"{seeded}/.config/gone", 'exists': False}],
            'total': 1,
            'existing': 0,
            'deleted': 1,
        }]

    def test_no_orphans(self, seeded, capsys):
        with patch.object(PackageManager, 'detect', return_value=PackageManager.DPKG), \
                patch.object(PackageManager, 'list_installed',
                             return_value={'firefox', 'python-pip', 'oldpkg'}):
            assert main(['orphans']) == 0
        assert "No orphaned files found!" in capsys.readouterr().out

    def test_text(self, seeded, capsys):
        with patch.object(PackageManager, 'detect', return_value=PackageManager.RPM), \
                patch.object(PackageManager, 'list_installed', return_value=set()):
            assert main(['orphans']) == 0
        out = capsys.readouterr().out
        assert "firefox (1 file(s)):" in out
        assert "python-pip (1 file(s), 1 already deleted):" in out

    def test_no_package_manager(self, seeded, capsys):
        with patch.object(PackageManager, 'detect', return_value=None):
            assert main(['orphans']) == 1
        assert "No supported package manager" in capsys.readouterr().err

    def test_listing_failed(self, seeded, capsys):
        with patch.object(PackageManager, 'detect', return_value=PackageManager.APK), \
                patch.object(PackageManager, 'list_installed', return_value=None):
            assert main(['orphans']) == 1
        assert "Could not list installed packages with apk" in capsys.readouterr().err
