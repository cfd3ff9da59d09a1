import pytest

from voice_minutes.cli import build_parser, collect_inputs, main
from voice_minutes.errors import UploadError


@pytest.fixture
def recordings(tmp_path):
    folder = tmp_path / "recordings"
    folder.mkdir()
    (folder / "01_weekly.mp3").write_bytes(b"ID3 weekly")
    (folder / "02_review.m4a").write_bytes(b"ftyp review")
    (folder / "memo.txt").write_text("not audio", encoding="utf-8")
    return folder


def test_parser_defaults():
    args = build_parser().parse_args(["a.mp3"])
    assert args.inputs == ["a.mp3"]
    assert args.language is None
    assert args.no_publish is False


def test_collect_inputs(recordings):
    files = collect_inputs([str(recordings)])
    assert [p.name for p in files] == ["01_weekly.mp3", "02_review.m4a"]
    with pytest.raises(UploadError):
        collect_inputs([str(recordings / "memo.txt")])


def test_batch_success(recordings, services, capsys):
    code = main([str(recordings), "--no-publish"], services=services)

    assert code == 0
    out = capsys.readouterr().out
    assert out.count("[OK]") == 2
    assert "成功率: 100.0%" in out
    assert services.repository.get_statistics()["total_meetings"] == 2
    # 元のファイルはそのまま残る
    assert (recordings / "01_weekly.mp3").exists()


def test_batch_continues_after_failure(recordings, services, capsys):
    (recordings / "03_broken.wav").write_bytes(b"RIFF broken")

    code = main([str(recordings), "--no-publish"], services=services)

    assert code == 1
    out = capsys.readouterr().out
    assert "[FAIL] 03_broken.wav (transcribing)" in out
    assert "合計: 3件 / 成功: 2件 / 失敗: 1件" in out


def test_missing_input_returns_2(tmp_path, services, capsys):
    assert main([str(tmp_path / "nothing.mp3")], services=services) == 2
    assert "エラー" in capsys.readouterr().err


def test_empty_directory_returns_2(tmp_path, services):
    empty = tmp_path / "empty"
    empty.mkdir()
    assert main([str(empty)], services=services) == 2


def test_report_keeps_input_order_when_copy_fails(recordings, services, capsys):
    (recordings / "01_zz_empty.mp3").write_bytes(b"")

    code = main([str(recordings), "--no-publish"], services=services)

    assert code == 1
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("[")]
    assert [line.split()[1] for line in lines] == ["01_weekly.mp3", "01_zz_empty.mp3", "02_review.m4a"]
    assert lines[1].startswith("[FAIL] 01_zz_empty.mp3 (uploaded)")
