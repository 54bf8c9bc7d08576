"""CLI integration tests for PawnAI Studio."""

import json

import pytest
from typer.testing import CliRunner

from pawnai_studio.cli import app
from pawnai_studio.cli import commands
from pawnai_studio.core import AudioFormat, FileArtifactStore

from conftest import RATE, sine_pcm

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_workspace(tmp_path, monkeypatch):
    """Run in a temporary directory so that existing workspace config is ignored."""
    monkeypatch.chdir(tmp_path)
    # recreate app_config so it reads from the new cwd
    monkeypatch.setattr(commands, "app_config", commands.AppConfig())
    return tmp_path


@pytest.fixture
def stored_take(tmp_path):
    store = FileArtifactStore(tmp_path / "artifacts")
    return store.put(sine_pcm(2.0), AudioFormat(RATE))


def test_list_devices_command(monkeypatch):
    """Test list-devices command."""
    monkeypatch.setattr(
        commands,
        "list_input_devices",
        lambda driver_filter=None: [
            {"id": 4, "name": "USB Mic", "driver": "usb", "channels": 1, "rate": 48000, "is_default": True}
        ],
    )
    result = runner.invoke(app, ["list-devices"])
    assert result.exit_code == 0
    assert "USB Mic" in result.stdout
    assert "DEFAULT" in result.stdout


def test_list_devices_without_audio_backend(monkeypatch):
    def unavailable(driver_filter=None):
        raise ImportError("No module named 'pyaudio'")

    monkeypatch.setattr(commands, "list_input_devices", unavailable)
    result = runner.invoke(app, ["list-devices"])
    assert result.exit_code == 1
    assert "Audio devices unavailable" in result.stdout


def test_record_synthetic(tmp_path):
    storage = tmp_path / "artifacts"
    export = tmp_path / "exports" / "take.wav"
    result = runner.invoke(
        app,
        ["record", "--synthetic", "--duration", "0.5", "--storage", str(storage), "--export", str(export)],
    )
    assert result.exit_code == 0, result.stdout
    assert "Recorded" in result.stdout
    assert export.exists()

    infos = FileArtifactStore(storage).list_artifacts()
    assert len(infos) == 1
    assert infos[0].duration == pytest.approx(0.5, abs=0.2)

    records = [json.loads(line) for line in (storage / "sessions.jsonl").read_text().splitlines()]
    assert [record.get("event", record["type"]) for record in records] == ["start", "end", "export"]


def test_artifacts_command(tmp_path, stored_take):
    result = runner.invoke(app, ["artifacts", "--storage", str(tmp_path / "artifacts")])
    assert result.exit_code == 0
    assert stored_take.key[:8] in result.stdout
    assert "2.00s" in result.stdout


def test_artifacts_command_empty(tmp_path):
    result = runner.invoke(app, ["artifacts", "--storage", str(tmp_path / "empty")])
    assert result.exit_code == 0
    assert "No artifacts" in result.stdout


def test_edit_command(tmp_path, stored_take):
    edits = tmp_path / "edits.yml"
    edits.write_text(
        "- trim: {start: 0.5, end: 1.5}\n"
        "- tone_change: {profile: warm}\n"
        "- noise_reduction:\n"
        "- noise_reduction:\n",
        encoding="utf-8",
    )
    export = tmp_path / "edited.flac"
    result = runner.invoke(
        app,
        ["edit", stored_take.key, "--edits", str(edits), "--storage", str(tmp_path / "artifacts"),
         "--export", str(export)],
    )
    assert result.exit_code == 0, result.stdout
    assert "Skipped repeated noise_reduction()" in result.stdout
    assert "Rendered 1.00s" in result.stdout
    assert export.exists()


def test_edit_command_with_undo(tmp_path, stored_take):
    edits = tmp_path / "edits.yml"
    edits.write_text("- pitch_shift: {ratio: 2.0}\n- trim: {start: 0.0, end: 0.5}\n", encoding="utf-8")
    result = runner.invoke(
        app,
        ["edit", stored_take.key, "--edits", str(edits), "--storage", str(tmp_path / "artifacts"), "--undo", "1"],
    )
    assert result.exit_code == 0, result.stdout
    assert "Rendered 1.00s" in result.stdout


def test_edit_command_rejects_invalid_edit(tmp_path, stored_take):
    edits = tmp_path / "edits.yml"
    edits.write_text("- trim: {start: 1.5, end: 4.0}\n", encoding="utf-8")
    result = runner.invoke(
        app, ["edit", stored_take.key, "--edits", str(edits), "--storage", str(tmp_path / "artifacts")]
    )
    assert result.exit_code == 1
    assert "Edit rejected" in result.stdout


def test_edit_command_unknown_artifact(tmp_path):
    edits = tmp_path / "edits.yml"
    edits.write_text("- noise_reduction:\n", encoding="utf-8")
    result = runner.invoke(
        app, ["edit", "deadbeef", "--edits", str(edits), "--storage", str(tmp_path / "artifacts")]
    )
    assert result.exit_code == 1
    assert "No artifact with key deadbeef" in result.stdout


def test_edit_command_rejects_infinite_trim(tmp_path, stored_take):
    edits = tmp_path / "edits.yml"
    edits.write_text("- trim: {start: 0.0, end: .inf}\n", encoding="utf-8")
    result = runner.invoke(
        app, ["edit", stored_take.key, "--edits", str(edits), "--storage", str(tmp_path / "artifacts")]
    )
    assert result.exit_code == 1
    assert "Edit rejected" in result.stdout


def test_record_reports_failure_during_stop(tmp_path, monkeypatch):
    class UnpluggedController(commands.RecordingController):
        def stop(self):
            self.fail(OSError("device unplugged"))
            return super().stop()

    monkeypatch.setattr(commands, "RecordingController", UnpluggedController)
    result = runner.invoke(
        app, ["record", "--synthetic", "--duration", "0.3", "--storage", str(tmp_path / "artifacts")]
    )
    assert result.exit_code == 1
    assert "Recording failed: Audio input failed: device unplugged" in result.stdout
    assert "Partial capture kept" in result.stdout
