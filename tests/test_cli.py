import json

import pytest
from typer.testing import CliRunner

from notetaker import cli
from notetaker.services import build_services

runner = CliRunner()


@pytest.fixture
def services(tmp_path, monkeypatch):
    built = build_services(tmp_path / "home", recorder_command=[str(tmp_path / "no-recorder")])
    monkeypatch.setattr(cli, "_services", lambda: built)
    return built


def test_version_flag():
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert "notetaker v" in result.stdout


def test_config_update_and_masked_show(services):
    result = runner.invoke(cli.app, ["config", "--summary-api-key", "sk-abcdefghijkl", "--summary-model", "gpt-4o"])
    assert result.exit_code == 0

    shown = runner.invoke(cli.app, ["config", "--show"])
    data = json.loads(shown.stdout)

    assert data["summary_api_key"] == "sk-...ijkl"
    assert data["summary_model"] == "gpt-4o"
    assert services.vault.load().summary_api_key == "sk-abcdefghijkl"


def test_add_without_processing_then_list_and_rename(services, tmp_path):
    audio = tmp_path / "call.wav"
    audio.write_bytes(b"RIFF")

    added = runner.invoke(cli.app, ["add", str(audio), "--duration", "42", "--no-process"])
    assert added.exit_code == 0
    meeting = list(services.storage.list_meetings())[0]
    assert meeting.title == "call"

    listed = runner.invoke(cli.app, ["list"])
    assert meeting.id in listed.stdout

    renamed = runner.invoke(cli.app, ["rename", meeting.id, "Client Call"])
    assert renamed.exit_code == 0
    assert services.storage.get_meeting(meeting.id).title == "Client Call"


def test_transcribe_without_key_fails_cleanly(services, tmp_path):
    audio = tmp_path / "call.wav"
    audio.write_bytes(b"RIFF")
    meeting = services.pipeline.create_meeting(audio, 5)

    result = runner.invoke(cli.app, ["transcribe", meeting.id])

    assert result.exit_code == 1
    assert services.storage.get_meeting(meeting.id).status.value == "recorded"


def test_show_unknown_meeting(services):
    result = runner.invoke(cli.app, ["show", "missing"])

    assert result.exit_code == 1


def test_export_to_file(services, tmp_path):
    meeting = services.pipeline.create_meeting(tmp_path / "a.wav", 65, title="Retro")
    target = tmp_path / "retro.txt"

    result = runner.invoke(cli.app, ["export", meeting.id, "--format", "txt", "--output", str(target)])

    assert result.exit_code == 0
    assert target.read_text(encoding="utf-8").startswith("Retro\n=====")


def test_permissions_missing_recorder(services):
    result = runner.invoke(cli.app, ["permissions"])

    assert result.exit_code == 1
