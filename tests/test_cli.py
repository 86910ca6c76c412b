"""Tests for cli.py -- argument parsing and subcommand output.

Covers:
- import / preview / apply / reimport / reclassify / show round trip
- --json output on each subcommand
- Usage errors (apply with nothing selected, bad reclassify pair)
- Configuration errors exit with status 2
- Domain errors exit with status 1
- StoreError prints the partial summary

Logging setup is patched out so tests never reconfigure the root logger.
"""

import json
from unittest.mock import patch

import pytest

from kindling_sync import __version__
from kindling_sync.cli import EXIT_ERROR, EXIT_OK, EXIT_USAGE, build_parser, main
from kindling_sync.models import ParsedReference, ReferenceType
from kindling_sync.service import SyncService
from kindling_sync.store.sqlite import SQLiteProjectStore

OUTLINE = """\
# Act One

## Scene A

- do thing
"""


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No config files, .env or KINDLING_* variables leak in."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    for name in (
        "KINDLING_SYNC_CONFIG",
        "KINDLING_DB_PATH",
        "KINDLING_DEBUG",
        "KINDLING_REVIEW_THRESHOLD",
        "KINDLING_MAX_PARALLEL",
    ):
        monkeypatch.delenv(name, raising=False)
    with patch("kindling_sync.cli.setup_logging"):
        yield


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "kindling.db")


@pytest.fixture
def outline(tmp_path):
    path = tmp_path / "outline.md"
    path.write_text(OUTLINE, encoding="utf-8")
    return path


@pytest.fixture
def run(db, capsys):
    """Run the CLI against the temp database; returns (code, stdout, stderr)."""

    def _run(*argv):
        code = main(["--db", db, *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


@pytest.fixture
def project_id(run, outline):
    code, out, _ = run("import", str(outline), "--format", "markdown", "--json")
    assert code == EXIT_OK
    return json.loads(out)["project_id"]


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_format_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["import", "x.md", "--format", "scrivener"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out


class TestImport:
    def test_text_output(self, run, outline):
        code, out, _ = run("import", str(outline), "-f", "markdown")

        assert code == EXIT_OK
        assert out.startswith("Imported project ")
        assert "1 chapters, 1 scenes, 1 beats, 0 references" in out

    def test_json_output(self, run, outline):
        code, out, _ = run("import", str(outline), "-f", "markdown", "--json")
        data = json.loads(out)

        assert code == EXIT_OK
        assert data["counts"]["scenes"] == 1
        assert data["needs_reclassification"] is False

    def test_missing_source(self, run, tmp_path):
        code, out, err = run("import", str(tmp_path / "nope.md"), "-f", "markdown")

        assert code == EXIT_ERROR
        assert out == ""
        assert "Error: Source not found" in err


class TestPreviewAndApply:
    def test_preview_in_sync(self, run, project_id):
        code, out, _ = run("preview", project_id)
        assert code == EXIT_OK
        assert "No changes" in out

    def test_preview_lists_ids(self, run, project_id, outline):
        outline.write_text(OUTLINE.replace("## Scene A", "## Scene A!"), encoding="utf-8")

        code, out, _ = run("preview", project_id, "--json")
        data = json.loads(out)

        assert code == EXIT_OK
        assert data["counts"] == {"additions": 0, "changes": 1}
        assert data["changes"][0]["new_value"] == "Scene A!"

    def test_apply_selected_change(self, run, project_id, outline):
        outline.write_text(
            OUTLINE.replace("## Scene A", "## Scene A!") + "\n## Scene B\n",
            encoding="utf-8",
        )
        _, out, _ = run("preview", project_id, "--json")
        change_id = json.loads(out)["changes"][0]["id"]

        code, out, _ = run("apply", project_id, "--change", change_id)

        assert code == EXIT_OK
        assert out.startswith("Added 0 items, updated 1 fields")
        _, out, _ = run("preview", project_id, "--json")
        assert json.loads(out)["counts"] == {"additions": 1, "changes": 0}

    def test_apply_all(self, run, project_id, outline):
        outline.write_text(OUTLINE + "\n## Scene B\n", encoding="utf-8")

        code, out, _ = run("apply", project_id, "--all", "--json")

        assert code == EXIT_OK
        assert json.loads(out)["scenes_added"] == 1

    def test_apply_nothing_selected(self, run, project_id):
        code, _, err = run("apply", project_id)
        assert code == EXIT_USAGE
        assert "Nothing to apply" in err

    def test_unknown_project(self, run):
        code, _, err = run("preview", "no-such-project")
        assert code == EXIT_ERROR
        assert err.startswith("Error:")


class TestReimport:
    def test_reimport(self, run, project_id, outline):
        outline.write_text(OUTLINE + "- and more\n", encoding="utf-8")

        code, out, _ = run("reimport", project_id)

        assert code == EXIT_OK
        assert "Beats:    1 added, 0 updated" in out

    def test_store_error_prints_partial(self, run, project_id, outline, failing_store):
        outline.write_text(OUTLINE + "\n## Scene B\n", encoding="utf-8")
        broken = SyncService(failing_store(fail_after=0))

        with patch("kindling_sync.cli.SyncService.from_config", return_value=broken):
            code, _, err = run("reimport", project_id)

        assert code == EXIT_ERROR
        assert "disk full" in err
        assert "Applied before the failure:" in err


class TestReclassify:
    @pytest.fixture
    def reference_id(self, db, project_id):
        return SQLiteProjectStore(db).insert_reference(
            project_id,
            ParsedReference(
                source_id="ref:pier", name="Pier", reference_type=ReferenceType.ITEMS
            ),
            0,
        )

    def test_reclassify(self, run, project_id, reference_id):
        code, out, _ = run("reclassify", project_id, f"{reference_id}=locations")

        assert code == EXIT_OK
        assert out.strip() == "Pier: locations"

    def test_bad_pair(self, run, project_id):
        code, _, err = run("reclassify", project_id, "no-equals-sign")
        assert code == EXIT_USAGE
        assert "expected REFERENCE_ID=TYPE" in err

    def test_unknown_type(self, run, project_id, reference_id):
        code, _, err = run("reclassify", project_id, f"{reference_id}=monsters")
        assert code == EXIT_ERROR
        assert "Unknown reference type" in err


class TestShow:
    def test_no_projects(self, run):
        code, out, _ = run("show")
        assert code == EXIT_OK
        assert out.strip() == "No projects."

    def test_list(self, run, project_id):
        code, out, _ = run("show")
        assert code == EXIT_OK
        assert out.startswith(f"{project_id}  outline (markdown)")

    def test_tree(self, run, project_id):
        code, out, _ = run("show", project_id)
        assert code == EXIT_OK
        assert "Chapter: Act One" in out
        assert "  Scene: Scene A" in out
        assert "    - do thing" in out

    def test_tree_json(self, run, project_id):
        code, out, _ = run("show", project_id, "--json")
        data = json.loads(out)

        assert code == EXIT_OK
        assert data["project"]["id"] == project_id
        assert data["references"] == []


class TestConfiguration:
    def test_invalid_env_value(self, run, monkeypatch):
        monkeypatch.setenv("KINDLING_MAX_PARALLEL", "many")

        code, _, err = run("show")

        assert code == EXIT_USAGE
        assert "Configuration error" in err

    def test_invalid_yaml_value(self, run, tmp_path):
        config = tmp_path / "work" / ".kindling_sync" / "config.yml"
        config.parent.mkdir(parents=True)
        config.write_text("classifier:\n  review_threshold: 3\n", encoding="utf-8")

        code, _, err = run("show")

        assert code == EXIT_USAGE
        assert "Configuration error" in err

    def test_logging_configured_from_flags(self, db, tmp_path):
        log_file = str(tmp_path / "cli.log")
        with patch("kindling_sync.cli.setup_logging") as mock_setup:
            main(["--db", db, "--debug", "--log-file", log_file, "show"])

        kwargs = mock_setup.call_args[1]
        assert kwargs["mode"] == "cli"
        assert kwargs["debug"] is True
        assert kwargs["log_file"] == log_file
