"""
ローカルの音声ファイルをまとめて議事録にする

    python -m voice_minutes.cli ./recordings --language ja --no-publish
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from voice_minutes.config import Settings, get_settings
from voice_minutes.context import Services, build_services
from voice_minutes.errors import MinutesError, UploadError
from voice_minutes.logging_setup import configure_logging
from voice_minutes.services.intake import StoredFile, is_allowed_audio, scan_audio_directory
from voice_minutes.services.pipeline import BatchItemOutcome, BatchReport

logger = logging.getLogger("voice_minutes.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voice-minutes",
        description="音声ファイルから議事録を一括生成します",
    )
    parser.add_argument("inputs", nargs="+", help="音声ファイルまたは音声ファイルを含むディレクトリ")
    parser.add_argument("--language", default=None, help="文字起こしの言語コード（既定: TRANSCRIBE_LANGUAGE）")
    parser.add_argument("--no-publish", action="store_true", help="Wiki / Webhook / Slack への公開を行わない")
    parser.add_argument("--log-level", default=None, help="ログレベル（既定: LOG_LEVEL）")
    return parser


def collect_inputs(inputs: list[str]) -> list[Path]:
    files: list[Path] = []
    for raw in inputs:
        path = Path(raw)
        if path.is_dir():
            files.extend(scan_audio_directory(path))
        elif path.is_file() and is_allowed_audio(path.name):
            files.append(path)
        else:
            raise UploadError(f"音声ファイルではありません: {path}")
    return files


def print_report(report: BatchReport, out=None) -> None:
    out = out or sys.stdout
    for outcome in report.results:
        if outcome.success:
            docs = ", ".join(outcome.documents.values()) or "-"
            print(f"[OK]   {outcome.file_name} -> meeting #{outcome.meeting_id} {outcome.title} ({docs})", file=out)
        else:
            print(f"[FAIL] {outcome.file_name} ({outcome.stage}): {outcome.error}", file=out)
    print(
        f"\n合計: {report.total}件 / 成功: {report.successful}件 / 失敗: {report.failed}件"
        f" / 成功率: {report.success_rate}%",
        file=out,
    )


def run_batch(services: Services, sources: list[Path], language: Optional[str] = None,
              publish: bool = True) -> BatchReport:
    """uploads/ にコピーしてから順番に処理する。コピーに失敗したファイルも入力順で結果に含める。"""
    outcomes: list[Optional[BatchItemOutcome]] = [None] * len(sources)
    stored: list[StoredFile] = []
    positions: list[int] = []
    for index, source in enumerate(sources):
        try:
            stored.append(services.intake.store_local(source))
            positions.append(index)
        except UploadError as exc:
            logger.error("Copy failed: %s: %s", source, exc)
            outcomes[index] = BatchItemOutcome(file_name=source.name, success=False, stage="uploaded", error=exc.message)

    processed = services.pipeline.process_batch(stored, language=language, publish=publish)
    for index, outcome in zip(positions, processed.results):
        outcomes[index] = outcome
    return BatchReport(results=outcomes)


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None,
         services: Optional[Services] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or (services.settings if services else get_settings())
    configure_logging(args.log_level or settings.log_level)

    try:
        sources = collect_inputs(args.inputs)
    except MinutesError as exc:
        print(f"エラー: {exc.message}", file=sys.stderr)
        return 2
    if not sources:
        print("処理対象の音声ファイルがありません", file=sys.stderr)
        return 2

    if services is None:
        try:
            settings.validate_for_server()
        except RuntimeError as exc:
            print(f"エラー: {exc}", file=sys.stderr)
            return 2
        services = build_services(settings)

    report = run_batch(services, sources, language=args.language, publish=not args.no_publish)
    print_report(report)
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
