"""
Tests for the command line interface.
"""

import json
import sys

import pytest

from conftest import FakeProvider
from jobmatcher import __version__, app
from jobmatcher.engine import MatchEngine
from jobmatcher.storage import MatchStore


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["jobmatcher", *argv])
    app.main()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("JOBMATCHER_PROVIDER", raising=False)


@pytest.fixture
def cli_store(db_path, candidate_profile) -> MatchStore:
    store = MatchStore(db_path)
    for i in range(1, 4):
        store.add_job(job_id=i, title=f"Job {i}", description="<ul><li>Python</li></ul>")
    store.save_profile(candidate_profile)
    return store


@pytest.fixture
def fake_engine(monkeypatch, fast_config):
    provider = FakeProvider()

    def build(args):
        return MatchEngine(app._store(args), provider, config=fast_config)

    monkeypatch.setattr(app, "_engine", build)
    return provider


class TestParseJobIds:
    def test_parses_list(self):
        assert app.parse_job_ids("1, 2,,3") == [1, 2, 3]

    def test_rejects_garbage(self):
        with pytest.raises(SystemExit):
            app.parse_job_ids("1,two")


class TestCommands:
    """Test each subcommand end to end against a temporary database."""

    def test_version(self, monkeypatch, capsys):
        run_cli(monkeypatch, "--version")
        assert capsys.readouterr().out.strip() == __version__

    def test_init_db(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "--db", str(db_path), "init-db")

        assert db_path.exists()
        assert "Database ready" in capsys.readouterr().out

    def test_add_job_and_import_profile(self, monkeypatch, capsys, tmp_path, db_path):
        postings = tmp_path / "jobs.json"
        postings.write_text(json.dumps([{"title": "Backend Engineer"}, {"description": "no title"}]))
        profile = tmp_path / "profile.json"
        profile.write_text(json.dumps({
            "name": "Jane",
            "summary": "Engineer",
            "skills": [{"name": "Python", "proficiency": 4}],
            "experience": [{"title": "Engineer", "company": "Acme"}],
        }))

        run_cli(monkeypatch, "--db", str(db_path), "add-job", "--input", str(postings))
        run_cli(monkeypatch, "--db", str(db_path), "import-profile", "--input", str(profile))

        out = capsys.readouterr().out
        assert "Added job 1: Backend Engineer" in out
        assert "Skipping posting without title" in out
        assert "1 skills, 1 positions" in out
        assert MatchStore(db_path).fetch_profile().skills[0].name == "Python"

    def test_missing_input_file(self, monkeypatch, db_path):
        with pytest.raises(SystemExit):
            run_cli(monkeypatch, "--db", str(db_path), "add-job", "--input", "nope.json")

    def test_match_then_status_and_history(self, monkeypatch, capsys, cli_store, db_path, fake_engine):
        run_cli(monkeypatch, "--db", str(db_path), "match", "--jobs", "1,2,3")

        out = capsys.readouterr().out
        summary = json.loads(out[out.index("{"):])
        assert summary["total"] == 3
        assert summary["succeeded"] == 3
        assert "[completed] 3/3" in out

        run_cli(monkeypatch, "--db", str(db_path), "status", "--session", summary["sessionId"], "--logs")
        out = capsys.readouterr().out
        assert "Status: completed" in out
        assert "job 2: succeeded (score 80.0)" in out

        run_cli(monkeypatch, "--db", str(db_path), "history")
        assert "Found 1 sessions" in capsys.readouterr().out

    def test_match_unmatched(self, monkeypatch, capsys, cli_store, db_path, fake_engine):
        run_cli(monkeypatch, "--db", str(db_path), "match-unmatched")
        out = capsys.readouterr().out
        assert json.loads(out[out.index("{"):])["total"] == 3

        run_cli(monkeypatch, "--db", str(db_path), "match-unmatched")
        assert "No unmatched jobs." in capsys.readouterr().out

    def test_stop(self, monkeypatch, capsys, cli_store, db_path):
        session_id = cli_store.insert_session(jobs_total=3, trigger_source="manual")

        run_cli(monkeypatch, "--db", str(db_path), "stop", "--session", session_id)
        run_cli(monkeypatch, "--db", str(db_path), "stop", "--session", session_id)

        out = capsys.readouterr().out
        assert f"Stopped session {session_id}" in out
        assert f"Session {session_id} is not active" in out
        assert cli_store.get_session_row(session_id)["status"] == "failed"

    def test_status_unknown_session(self, monkeypatch, db_path):
        with pytest.raises(SystemExit):
            run_cli(monkeypatch, "--db", str(db_path), "status", "--session", "missing")

    def test_config(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "--db", str(db_path), "config", "--set", "matcher_batch_size=4")

        out = capsys.readouterr().out
        assert json.loads(out)["batch_size"] == 4

        run_cli(monkeypatch, "--db", str(db_path), "config", "--set", "matcher_max_retries=9")
        assert "Max retries must be between 1 and 5" in capsys.readouterr().out

    def test_config_unknown_key(self, monkeypatch, db_path):
        with pytest.raises(SystemExit):
            run_cli(monkeypatch, "--db", str(db_path), "config", "--set", "colour=blue")
