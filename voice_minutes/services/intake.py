"""
音声ファイルの受け入れ
形式・サイズの検証と uploads/ への保存
"""
import logging
import mimetypes
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from voice_minutes.errors import UploadError

logger = logging.getLogger("voice_minutes.intake")

ALLOWED_MIME_TYPES = {
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/wave", "audio/x-wav",
    "audio/m4a", "audio/mp4", "audio/aac", "audio/ogg", "audio/webm",
    "audio/flac", "video/mp4", "video/quicktime",
}
ALLOWED_EXTENSIONS = {".mp3", ".wav", ".m4a", ".aac", ".ogg", ".webm", ".flac", ".mp4", ".mov"}

CHUNK_SIZE = 1024 * 1024


@dataclass
class StoredFile:
    file_name: str
    original_name: str
    file_path: Path
    file_size: int
    mime_type: Optional[str]

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "original_name": self.original_name,
            "file_path": str(self.file_path),
            "file_size": self.file_size,
            "mime_type": self.mime_type,
        }


def is_allowed_audio(file_name: str, mime_type: Optional[str] = None) -> bool:
    """MIMEタイプまたは拡張子のどちらかが許可されていればOK"""
    ext = Path(file_name or "").suffix.lower()
    return (mime_type or "").lower() in ALLOWED_MIME_TYPES or ext in ALLOWED_EXTENSIONS


def scan_audio_directory(path: Path) -> list[Path]:
    """ディレクトリ内の音声ファイルを名前順で返す"""
    path = Path(path)
    if not path.is_dir():
        raise UploadError(f"ディレクトリが見つかりません: {path}")
    return sorted(
        (p for p in path.iterdir() if p.is_file() and not p.name.startswith(".") and is_allowed_audio(p.name)),
        key=lambda p: p.name,
    )


class AudioIntake:
    """アップロードされた音声を検証して uploads/ に保存する"""

    def __init__(self, upload_dir: Path, max_size: int = 100 * 1024 * 1024, max_files: int = 5):
        self._upload_dir = Path(upload_dir)
        self._max_size = max_size
        self._max_files = max_files
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    @property
    def max_files(self) -> int:
        return self._max_files

    def _stored_name(self, original_name: str) -> str:
        ext = Path(original_name or "").suffix.lower() or ".webm"
        return f"{uuid.uuid4()}_{int(time.time() * 1000)}{ext}"

    def validate(self, original_name: str, mime_type: Optional[str]) -> None:
        if not original_name:
            raise UploadError("ファイル名がありません", user_message="音声ファイルをアップロードしてください")
        if not is_allowed_audio(original_name, mime_type):
            raise UploadError(
                f"サポートされていないファイル形式です: {mime_type or Path(original_name).suffix}",
                user_message="サポートされていないファイル形式です。音声ファイル（mp3, wav, m4a など）をアップロードしてください",
            )

    def check_count(self, count: int) -> None:
        if count == 0:
            raise UploadError("ファイルがありません", user_message="音声ファイルをアップロードしてください")
        if count > self._max_files:
            raise UploadError(
                f"ファイル数が上限を超えています: {count} > {self._max_files}",
                user_message=f"一度にアップロードできるファイルは最大{self._max_files}件です",
            )

    def store(self, stream: BinaryIO, original_name: str, mime_type: Optional[str] = None) -> StoredFile:
        """
        ストリームを分割して書き込み、サイズ上限を超えたら削除してエラーにする

        Raises:
            UploadError: 形式が不正、空ファイル、またはサイズ上限超過
        """
        self.validate(original_name, mime_type)
        file_name = self._stored_name(original_name)
        path = self._upload_dir / file_name
        size = 0
        try:
            with path.open("wb") as f:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self._max_size:
                        raise UploadError(
                            f"ファイルサイズが上限を超えています: {original_name}",
                            user_message=f"ファイルサイズは最大{self._max_size // (1024 * 1024)}MBです",
                        )
                    f.write(chunk)
        except UploadError:
            path.unlink(missing_ok=True)
            raise
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise UploadError(f"ファイルの保存に失敗しました: {exc}") from exc

        if size == 0:
            path.unlink(missing_ok=True)
            raise UploadError(f"空のファイルです: {original_name}", user_message="空のファイルはアップロードできません")

        logger.info("Upload stored: %s -> %s (%d bytes)", original_name, file_name, size)
        return StoredFile(
            file_name=file_name,
            original_name=original_name,
            file_path=path,
            file_size=size,
            mime_type=mime_type or mimetypes.guess_type(original_name)[0],
        )

    def store_local(self, source: Path) -> StoredFile:
        """ローカルの音声ファイルを uploads/ にコピーする（CLI用）"""
        source = Path(source)
        if not source.is_file():
            raise UploadError(f"ファイルが見つかりません: {source}")
        with source.open("rb") as f:
            return self.store(f, source.name, mimetypes.guess_type(source.name)[0])

    @staticmethod
    def discard(stored: StoredFile) -> None:
        try:
            Path(stored.file_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove uploaded file %s: %s", stored.file_path, exc)
