"""Tests for hook settings generation, installation and restore."""

import json
import subprocess
import sys

import pytest

from agent_supervisor.hooks import (
    SETTINGS_RELATIVE_PATH,
    generate_hooks_config,
    install_hooks,
    progress_file_for,
    remove_hooks,
    restore_settings,
)


class TestGenerateHooksConfig:
    def test_structure(self, tmp_path) -> None:
        config = generate_hooks_config("task-1", tmp_path)

        hooks = config["hooks"]
        assert set(hooks) == {"PostToolUse", "Stop"}
        assert hooks["PostToolUse"][0]["matcher"] == "*"
        post = hooks["PostToolUse"][0]["hooks"][0]
        stop = hooks["Stop"][0]["hooks"][0]
        assert post["type"] == "command"
        assert post["timeout"] == 5
        assert stop["timeout"] == 10
        assert str(progress_file_for("task-1", tmp_path).as_posix()) in post["command"]

    def test_progress_file_path(self, tmp_path) -> None:
        assert progress_file_for("task-9", tmp_path) == tmp_path / "task-9.jsonl"

    @pytest.mark.integration
    @pytest.mark.skipif(
        "not config.getoption('--run-integration', default=False)",
        reason="Integration tests skipped - use --run-integration to run",
    )
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell quoting")
    def test_commands_append_progress_entries(self, tmp_path) -> None:
        """Running the hook commands appends tool_use and agent_stopped lines."""
        hooks = generate_hooks_config("task-1", tmp_path)["hooks"]
        post = hooks["PostToolUse"][0]["hooks"][0]["command"]
        stop = hooks["Stop"][0]["hooks"][0]["command"]

        subprocess.run(post, shell=True, input='{"tool_name": "Edit"}', text=True, check=True)
        subprocess.run(stop, shell=True, input="not json", text=True, check=True)

        lines = progress_file_for("task-1", tmp_path).read_text().splitlines()
        first, second = (json.loads(line) for line in lines)
        assert first["type"] == "tool_use"
        assert first["tool"] == "Edit"
        assert first["timestamp"]
        assert second["type"] == "agent_stopped"
        assert second["reason"] == "unknown"


class TestInstallHooks:
    def test_creates_settings_file(self, project, tmp_path) -> None:
        hooks = generate_hooks_config("task-1", tmp_path)

        path, original = install_hooks(project, hooks)

        assert path == project / SETTINGS_RELATIVE_PATH
        assert original is None
        assert json.loads(path.read_text()) == hooks

    def test_merges_with_existing_settings(self, project, tmp_path) -> None:
        settings_path = project / SETTINGS_RELATIVE_PATH
        settings_path.parent.mkdir()
        existing = {
            "permissions": {"allow": ["Bash(npm test)"]},
            "hooks": {"PostToolUse": [{"matcher": "Edit", "hooks": []}]},
        }
        settings_path.write_text(json.dumps(existing))
        hooks = generate_hooks_config("task-1", tmp_path)

        _, original = install_hooks(project, hooks)

        merged = json.loads(settings_path.read_text())
        assert original == json.dumps(existing)
        assert merged["permissions"] == existing["permissions"]
        assert [g["matcher"] for g in merged["hooks"]["PostToolUse"]] == ["Edit", "*"]
        assert merged["hooks"]["Stop"] == hooks["hooks"]["Stop"]

    def test_invalid_json_is_replaced_but_snapshotted(self, project, tmp_path) -> None:
        settings_path = project / SETTINGS_RELATIVE_PATH
        settings_path.parent.mkdir()
        settings_path.write_text("{broken")

        _, original = install_hooks(project, generate_hooks_config("task-1", tmp_path))

        assert original == "{broken"
        assert "hooks" in json.loads(settings_path.read_text())


class TestRestoreSettings:
    def test_restore_original_content(self, project, tmp_path) -> None:
        settings_path = project / SETTINGS_RELATIVE_PATH
        settings_path.parent.mkdir()
        settings_path.write_text('{"model": "opus"}')
        path, original = install_hooks(project, generate_hooks_config("task-1", tmp_path))

        restore_settings(path, original)

        assert settings_path.read_text() == '{"model": "opus"}'

    def test_restore_removes_created_file(self, project, tmp_path) -> None:
        path, original = install_hooks(project, generate_hooks_config("task-1", tmp_path))

        restore_settings(path, original)

        assert not path.exists()

    def test_restore_missing_file_is_noop(self, project) -> None:
        restore_settings(project / SETTINGS_RELATIVE_PATH, None)


class TestRemoveHooks:
    def test_removes_only_one_tasks_groups(self, project, tmp_path) -> None:
        settings_path = project / SETTINGS_RELATIVE_PATH
        settings_path.parent.mkdir()
        settings_path.write_text(json.dumps({"model": "opus"}))
        first = generate_hooks_config("task-a", tmp_path)
        second = generate_hooks_config("task-b", tmp_path)
        install_hooks(project, first)
        install_hooks(project, second)

        remove_hooks(settings_path, first)

        settings = json.loads(settings_path.read_text())
        assert settings["model"] == "opus"
        assert settings["hooks"] == second["hooks"]

    def test_drops_events_left_empty(self, project, tmp_path) -> None:
        config = generate_hooks_config("task-a", tmp_path)
        path, _ = install_hooks(project, config)

        remove_hooks(path, config)

        assert json.loads(path.read_text()) == {"hooks": {}}

    def test_missing_file_is_noop(self, project, tmp_path) -> None:
        path = project / SETTINGS_RELATIVE_PATH

        remove_hooks(path, generate_hooks_config("task-a", tmp_path))

        assert not path.exists()

    def test_invalid_json_is_left_alone(self, project, tmp_path) -> None:
        path = project / SETTINGS_RELATIVE_PATH
        path.parent.mkdir()
        path.write_text("{not json")

        remove_hooks(path, generate_hooks_config("task-a", tmp_path))

        assert path.read_text() == "{not json"
