"""
アプリケーション設定管理モジュール
環境変数の読み込み、ディレクトリパスの定義
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# 環境変数の読み込み
load_dotenv()

BASE_DIR = Path(__file__).parent


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings(BaseModel):
    """実行時設定（環境変数から組み立てる）"""
    app_env: str = "development"
    port: int = 8000
    log_level: str = "INFO"

    # OpenAI設定
    openai_api_key: str = ""
    openai_timeout: float = 120.0
    openai_max_retries: int = 3
    whisper_model: str = "whisper-1"
    structure_model: str = "gpt-4o"
    transcribe_language: str = "ja"
    minutes_narrative_mode: str = "template"  # template / llm

    # データベース設定（Supabase Postgres）
    database_url: str = "sqlite:///./data/minutes.db"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_key: str = ""

    # 公開先設定
    wiki_base_url: str = ""
    wiki_api_token: str = ""
    wiki_space_key: str = "MEETING_MINUTES"
    n8n_webhook_url: str = ""
    slack_bot_token: str = ""
    slack_channel_id: str = ""
    publish_timeout: float = 30.0

    # アップロード制限
    upload_max_size: int = 100 * 1024 * 1024  # 100MB
    max_files_per_request: int = 5

    data_dir: Path = BASE_DIR.parent / "data"

    @classmethod
    def from_env(cls) -> "Settings":
        """環境変数から設定を読み込む"""
        data_dir = Path(os.getenv("DATA_DIR", "") or BASE_DIR.parent / "data")
        database_url = os.getenv("DATABASE_URL", "") or f"sqlite:///{data_dir / 'minutes.db'}"
        # Supabase / Heroku 形式の URL を SQLAlchemy 形式に合わせる
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            port=_env_int("PORT", 8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_timeout=_env_float("OPENAI_TIMEOUT", 120.0),
            openai_max_retries=_env_int("OPENAI_MAX_RETRIES", 3),
            whisper_model=os.getenv("WHISPER_MODEL", "whisper-1"),
            structure_model=os.getenv("STRUCTURE_MODEL", "gpt-4o"),
            transcribe_language=os.getenv("TRANSCRIBE_LANGUAGE", "ja"),
            minutes_narrative_mode=os.getenv("MINUTES_NARRATIVE_MODE", "template").lower(),
            database_url=database_url,
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY", ""),
            wiki_base_url=os.getenv("WIKI_BASE_URL", ""),
            wiki_api_token=os.getenv("WIKI_API_TOKEN", ""),
            wiki_space_key=os.getenv("WIKI_SPACE_KEY", "MEETING_MINUTES"),
            n8n_webhook_url=os.getenv("N8N_WEBHOOK_URL", ""),
            slack_bot_token=os.getenv("SLACK_BOT_TOKEN", ""),
            slack_channel_id=os.getenv("SLACK_CHANNEL_ID", ""),
            publish_timeout=_env_float("PUBLISH_TIMEOUT", 30.0),
            upload_max_size=_env_int("UPLOAD_MAX_SIZE", 100 * 1024 * 1024),
            max_files_per_request=_env_int("MAX_FILES_PER_REQUEST", 5),
            data_dir=data_dir,
        )

    # =========================
    # ディレクトリパスの定義
    # =========================
    @property
    def upload_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def trans_dir(self) -> Path:
        return self.data_dir / "transcripts"

    @property
    def summ_dir(self) -> Path:
        return self.data_dir / "summaries"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def ensure_dirs(self) -> None:
        """必要なディレクトリを作成"""
        for d in (self.data_dir, self.upload_dir, self.trans_dir, self.summ_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)

    def validate_for_server(self) -> None:
        """サーバー起動に必須の設定を検証"""
        if not self.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY が未設定です。")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """プロセス共通の設定（初回のみ環境変数から生成）"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
