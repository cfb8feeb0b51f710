from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Callable

import pytest

from rails5_xhr_update.runner import main

WriteRb = Callable[[str, str], Path]

LEGACY = "class ItemsTest < ActionController::TestCase\n  test 'index' do\n    xhr :get, :index, page: 2\n  end\nend\n"
CONVERTED = "class ItemsTest < ActionController::TestCase\n  test 'index' do\n    get :index, params: { page: 2 }, xhr: true\n  end\nend\n"


def test_prints_converted_source(rb_file: WriteRb, capsys: pytest.CaptureFixture[str]) -> None:
    path = rb_file("items_test.rb", LEGACY)

    assert main([str(path)]) == 0
    assert capsys.readouterr().out == CONVERTED
    assert path.read_text(encoding="utf-8") == LEGACY


def test_write_updates_file_in_place(rb_file: WriteRb, capsys: pytest.CaptureFixture[str]) -> None:
    path = rb_file("items_test.rb", LEGACY)

    assert main(["--write", str(path)]) == 0
    assert path.read_text(encoding="utf-8") == CONVERTED
    assert capsys.readouterr().out == ""


def test_write_keeps_crlf_line_endings(tmp_path: Path) -> None:
    path = tmp_path / "crlf_test.rb"
    path.write_bytes(b"xhr :get, root_path\r\nassert_response :ok\r\n")

    assert main(["-w", str(path)]) == 0
    assert path.read_bytes() == b"get root_path, xhr: true\r\nassert_response :ok\r\n"


def test_diff_output(rb_file: WriteRb, capsys: pytest.CaptureFixture[str]) -> None:
    path = rb_file("items_test.rb", LEGACY)

    assert main(["--diff", str(path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith(f"--- a/{path}\n+++ b/{path}\n")
    assert "-    xhr :get, :index, page: 2\n" in out
    assert "+    get :index, params: { page: 2 }, xhr: true\n" in out


def test_diff_of_unchanged_file_is_empty(rb_file: WriteRb, capsys: pytest.CaptureFixture[str]) -> None:
    path = rb_file("plain_test.rb", CONVERTED)

    assert main(["--diff", str(path)]) == 0
    assert capsys.readouterr().out == ""


def test_failed_file_is_reported_and_others_still_run(
    rb_file: WriteRb,
    capsys: pytest.CaptureFixture[str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    bad = rb_file("bad_test.rb", "xhr :get, path, 1, 2, 3\n")
    good = rb_file("good_test.rb", LEGACY)

    assert main(["-w", str(bad), str(good)]) == 1
    assert bad.read_text(encoding="utf-8") == "xhr :get, path, 1, 2, 3\n"
    assert good.read_text(encoding="utf-8") == CONVERTED
    assert f"{bad}: " in caplog.text
    assert "1 of 2 file(s) failed" in caplog.text


def test_parse_failure_and_missing_file(tmp_path: Path, rb_file: WriteRb, capsys: pytest.CaptureFixture[str]) -> None:
    broken = rb_file("broken_test.rb", "xhr(:get, path\n")
    missing = tmp_path / "missing_test.rb"

    assert main([str(broken), str(missing)]) == 1
    assert capsys.readouterr().out == ""


def test_requires_a_file(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 2


def test_module_entry_point(rb_file: WriteRb) -> None:
    path = rb_file("items_test.rb", LEGACY)
    src_dir = Path(__file__).resolve().parent.parent / "src"

    result = subprocess.run(
        [sys.executable, "-m", "rails5_xhr_update", str(path)],
        capture_output=True,
        text=True,
        cwd=src_dir,
        check=False,
    )
    assert result.returncode == 0
    assert result.stdout == CONVERTED
