"""
ドメイン例外定義
各アダプタはプロバイダ固有の例外をここの例外に包み直して送出する
"""
from typing import Any, Optional


class MinutesError(Exception):
    """議事録処理の基底例外"""
    status_code = 500
    user_message = "内部サーバーエラーが発生しました"

    def __init__(self, message: str, *, detail: Optional[Any] = None, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if user_message:
            self.user_message = user_message


class ValidationError(MinutesError):
    status_code = 400
    user_message = "入力データの検証に失敗しました"


class UploadError(MinutesError):
    status_code = 400
    user_message = "ファイルのアップロードに失敗しました"


class NotFoundError(MinutesError):
    status_code = 404
    user_message = "要求されたリソースが見つかりません"


class TranscriptionError(MinutesError):
    user_message = "音声の文字起こしに失敗しました"


class StructuringError(MinutesError):
    user_message = "会議内容の構造化に失敗しました"


class RenderError(MinutesError):
    user_message = "議事録ドキュメントの生成に失敗しました"


class PersistenceError(MinutesError):
    user_message = "データベース処理に失敗しました"


class PublicationError(MinutesError):
    user_message = "議事録の公開に失敗しました"


class PipelineFailure(MinutesError):
    """パイプラインのいずれかのステージで処理が中断された"""
    user_message = "音声ファイルの処理中にエラーが発生しました"

    def __init__(self, stage: str, cause: Exception, audio_asset_id: Optional[int] = None):
        super().__init__(str(cause), detail={"stage": stage, "audio_file_id": audio_asset_id})
        self.stage = stage
        self.cause = cause
        self.audio_asset_id = audio_asset_id
        if isinstance(cause, MinutesError):
            self.status_code = cause.status_code
