import pytest

from voice_minutes.config import Settings


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db.example.supabase.co:5432/postgres")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("UPLOAD_MAX_SIZE", "not-a-number")
    monkeypatch.setenv("MINUTES_NARRATIVE_MODE", "LLM")

    settings = Settings.from_env()

    assert settings.database_url == "postgresql://user:pw@db.example.supabase.co:5432/postgres"
    assert settings.upload_max_size == 100 * 1024 * 1024
    assert settings.minutes_narrative_mode == "llm"
    assert settings.upload_dir == tmp_path / "uploads"
    assert settings.summ_dir == tmp_path / "summaries"


def test_default_database_is_local_sqlite(monkeypatch, tmp_path):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    assert Settings.from_env().database_url == f"sqlite:///{tmp_path / 'minutes.db'}"


def test_server_requires_openai_key(tmp_path):
    with pytest.raises(RuntimeError):
        Settings(openai_api_key="", data_dir=tmp_path).validate_for_server()


def test_ensure_dirs(tmp_path):
    settings = Settings(data_dir=tmp_path / "data")
    settings.ensure_dirs()
    for d in (settings.upload_dir, settings.trans_dir, settings.summ_dir, settings.logs_dir):
        assert d.is_dir()
