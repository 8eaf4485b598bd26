import io

from rich.console import Console

from notetaker import onboarding
from notetaker.config import CredentialVault


def _scripted(monkeypatch, answers, confirms):
    answers = iter(answers)
    confirms = iter(confirms)
    monkeypatch.setattr(onboarding.Prompt, "ask", lambda *args, **kwargs: next(answers))
    monkeypatch.setattr(onboarding.Confirm, "ask", lambda *args, **kwargs: next(confirms))


def test_onboarding_saves_shared_key(tmp_path, monkeypatch):
    vault = CredentialVault(tmp_path)
    _scripted(monkeypatch, ["sk-shared-123456", "whisper-1", "gpt-4o"], [True, True])

    config = onboarding.run_onboarding(vault, Console(file=io.StringIO()))

    stored = vault.load()
    assert stored == config
    assert stored.transcription_api_key == "sk-shared-123456"
    assert stored.summary_api_key == "sk-shared-123456"
    assert stored.transcription_model == "whisper-1"
    assert stored.summary_model == "gpt-4o"


def test_blank_answer_keeps_existing_key(tmp_path, monkeypatch):
    vault = CredentialVault(tmp_path)
    vault.update(transcription_api_key="sk-old-abcdef", summary_api_key="sk-sum-abcdef")
    _scripted(monkeypatch, ["", "gpt-4o-transcribe", "", "gpt-5"], [False, True])

    onboarding.run_onboarding(vault, Console(file=io.StringIO()))

    stored = vault.load()
    assert stored.transcription_api_key == "sk-old-abcdef"
    assert stored.summary_api_key == "sk-sum-abcdef"


def test_declined_save_leaves_vault_untouched(tmp_path, monkeypatch):
    vault = CredentialVault(tmp_path)
    _scripted(monkeypatch, ["sk-new-abcdef", "gpt-4o-transcribe", "gpt-5"], [True, False])

    onboarding.run_onboarding(vault, Console(file=io.StringIO()))

    assert not vault.config_path.exists()
