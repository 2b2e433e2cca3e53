"""
Tests for the feedengine CLI commands.

Commands run through Typer's CliRunner against fixture files written
into a temporary directory.
"""

import json
import logging
import os

import pytest
import yaml
from typer.testing import CliRunner

from feedengine.cli import __version__
from feedengine.cli.main import app
from tests.conftest import block


runner = CliRunner()

FIXTURE = {
    "users": ["viewer", "alice", "mallory"],
    "follows": {"viewer": ["alice"]},
    "blocks": [["viewer", "mallory"]],
    "posts": [
        {"id": "art-1", "author_id": "alice", "kind": "image",
         "created_at": "2024-01-01T12:10:00Z", "tags": ["art"]},
        {"id": "art-2", "author_id": "alice", "kind": "image",
         "created_at": "2024-01-01T12:20:00Z", "tags": ["#Art", "sketch"]},
        {"id": "blocked-art", "author_id": "mallory", "kind": "image",
         "created_at": "2024-01-01T12:30:00Z", "tags": ["art"]},
        {"id": "video-art", "author_id": "alice", "kind": "video",
         "created_at": "2024-01-01T12:40:00Z", "tags": ["art"]},
        {"id": "travel", "author_id": "alice", "kind": "image",
         "created_at": "2024-01-01T12:50:00Z", "tags": ["travel"]},
    ],
}


@pytest.fixture(autouse=True)
def isolated_cli(tmp_path, monkeypatch):
    """Run every command from an empty directory with no ambient config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    for key in list(os.environ):
        if key.startswith("FEEDENGINE_"):
            monkeypatch.delenv(key)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def blocks_file(tmp_path):
    path = tmp_path / "blocks.yaml"
    path.write_text(yaml.safe_dump([
        block("post-type", "equals", ["image"]),
        block("tag", "contains", ["art"]),
    ]))
    return path


@pytest.fixture
def corpus_file(tmp_path):
    path = tmp_path / "corpus.yaml"
    path.write_text(yaml.safe_dump(FIXTURE))
    return path


@pytest.mark.cli
class TestCompileCommand:
    """Test the compile command."""

    def test_compile_text(self, blocks_file):
        result = runner.invoke(app, ["compile", str(blocks_file)])
        assert result.exit_code == 0
        assert "Compiled feed" in result.output
        assert "Estimated cost: 6" in result.output

    def test_compile_json(self, blocks_file):
        result = runner.invoke(app, ["--log-level", "ERROR", "compile", str(blocks_file), "--json"])
        assert result.exit_code == 0

        data = json.loads(result.output)
        assert data["block_count"] == 2
        root = data["root"]
        assert root["type"] == "and"
        assert [child["kind"] for child in root["children"]] == ["post-type", "tag"]

    def test_compile_empty_blocks(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("[]")
        result = runner.invoke(app, ["compile", str(path)])
        assert result.exit_code == 0
        assert "everyone the viewer follows" in result.output

    def test_compile_too_many_blocks(self, tmp_path):
        path = tmp_path / "huge.yaml"
        path.write_text(yaml.safe_dump({"blocks": [block("tag", "equals", f"t{i}") for i in range(21)]}))
        result = runner.invoke(app, ["compile", str(path)])
        assert result.exit_code == 1

    def test_missing_blocks_file(self, tmp_path):
        result = runner.invoke(app, ["compile", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0


@pytest.mark.cli
class TestEvaluateCommand:
    """Test the evaluate command."""

    def test_evaluate_table(self, blocks_file, corpus_file):
        result = runner.invoke(app, [
            "evaluate", str(blocks_file), "--corpus", str(corpus_file), "--viewer", "viewer",
        ])
        assert result.exit_code == 0
        assert "art-2" in result.output
        assert "blocked-art" not in result.output
        assert "Scanned" in result.output

    def test_evaluate_json(self, blocks_file, corpus_file):
        result = runner.invoke(app, [
            "--log-level", "ERROR",
            "evaluate", str(blocks_file), "--corpus", str(corpus_file), "--viewer", "viewer", "--json",
        ])
        assert result.exit_code == 0

        page = json.loads(result.output)
        assert [item["id"] for item in page["items"]] == ["art-2", "art-1"]
        assert page["has_more"] is False
        assert page["degraded"] is False

    def test_evaluate_pages_with_cursor(self, blocks_file, corpus_file):
        args = ["--log-level", "ERROR", "evaluate", str(blocks_file),
                "--corpus", str(corpus_file), "--viewer", "viewer", "--json", "--limit", "1"]
        first = json.loads(runner.invoke(app, args).output)
        assert [item["id"] for item in first["items"]] == ["art-2"]
        assert first["has_more"] is True

        second = json.loads(runner.invoke(app, args + ["--cursor", first["next_cursor"]]).output)
        assert [item["id"] for item in second["items"]] == ["art-1"]

    def test_evaluate_no_matches(self, tmp_path, corpus_file):
        path = tmp_path / "none.yaml"
        path.write_text(yaml.safe_dump([block("tag", "equals", "cooking")]))
        result = runner.invoke(app, [
            "evaluate", str(path), "--corpus", str(corpus_file), "--viewer", "viewer",
        ])
        assert result.exit_code == 0
        assert "No entries match this feed." in result.output

    @pytest.mark.parametrize("limit", ["0", "101"])
    def test_evaluate_bad_limit(self, blocks_file, corpus_file, limit):
        result = runner.invoke(app, [
            "evaluate", str(blocks_file), "--corpus", str(corpus_file), "--viewer", "viewer", "--limit", limit,
        ])
        assert result.exit_code == 2

    def test_evaluate_bad_cursor(self, blocks_file, corpus_file):
        result = runner.invoke(app, [
            "evaluate", str(blocks_file), "--corpus", str(corpus_file), "--viewer", "viewer",
            "--cursor", "not-a-cursor",
        ])
        assert result.exit_code == 1


@pytest.mark.cli
class TestConfigCommands:
    """Test the config sub-commands."""

    def test_init_writes_profile(self, tmp_path):
        target = tmp_path / "engine.yaml"
        result = runner.invoke(app, ["config", "init", str(target), "--profile", "high-traffic"])
        assert result.exit_code == 0
        assert target.exists()
        assert isinstance(yaml.safe_load(target.read_text()), dict)

    def test_init_refuses_existing_file(self, tmp_path):
        target = tmp_path / "engine.yaml"
        target.write_text("log_level: INFO\n")

        result = runner.invoke(app, ["config", "init", str(target)])
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert target.read_text() == "log_level: INFO\n"

        assert runner.invoke(app, ["config", "init", str(target), "--force"]).exit_code == 0

    def test_init_unknown_profile(self, tmp_path):
        result = runner.invoke(app, ["config", "init", str(tmp_path / "x.yaml"), "--profile", "huge"])
        assert result.exit_code == 2

    def test_show_uses_config_file(self, tmp_path):
        target = tmp_path / "engine.yaml"
        target.write_text("log_level: WARNING\n")
        result = runner.invoke(app, ["--config", str(target), "config", "show", "--yaml"])
        assert result.exit_code == 0
        assert "log_level: WARNING" in result.output

    def test_schema_to_file(self, tmp_path):
        target = tmp_path / "schema.json"
        result = runner.invoke(app, ["config", "schema", "--output", str(target)])
        assert result.exit_code == 0
        assert "properties" in json.loads(target.read_text())


@pytest.mark.cli
def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
