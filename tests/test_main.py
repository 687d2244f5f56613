"""Tests for the main function (end to end on a temporary directory, exit codes)."""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import backup_retention
from backup_retention import ContractViolationError, DisposalError, IntegrityCheckFailedError, Item, NothingToKeepError, UnsafeOperationError, handle_exception, main


START = datetime(2021, 4, 10, 1, 0, tzinfo=timezone.utc)


def _create_backups(base: Path, days: int) -> list[Path]:
    files = []
    for i in range(days):
        ts = START - timedelta(days=i)
        f = base / ts.strftime("backup-%Y%m%d.tar.gz")
        f.write_text(str(i))
        os.utime(f, (ts.timestamp(), ts.timestamp()))
        files.append(f)
    return files


def test_main_prunes_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    files = _create_backups(tmp_path, 10)
    main([str(tmp_path), "--keep-last", "2", "--keep-weekly", "2"])
    assert [f.exists() for f in files] == [True, True, False, False, False, False, True, False, False, False]
    err = capsys.readouterr().err
    assert "Found 10 items" in err
    assert "backup-20210404.tar.gz: Keeping for 'weekly' 02/02" in err
    assert "PRUNING: backup-20210408.tar.gz" in err


def test_main_dry_run_keeps_everything(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    files = _create_backups(tmp_path, 4)
    main([str(tmp_path), "-X"])
    assert all(f.exists() for f in files)
    err = capsys.readouterr().err
    assert "DRY-RUN PRUNE: backup-20210409.tar.gz" in err
    assert "Total items keep:  001" in err


def test_main_json_output(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _create_backups(tmp_path, 3)
    main([str(tmp_path), "--keep-daily", "2", "--dry-run", "--json"])
    captured = capsys.readouterr()
    data = json.loads(captured.out)
    assert [Path(entry["item"]["path"]).name for entry in data["keep"]] == ["backup-20210410.tar.gz", "backup-20210409.tar.gz"]
    assert [entry["reasons"] for entry in data["keep"]] == [["last", "daily"], ["daily"]]
    assert len(data["prune"]) == 1
    assert captured.err == ""


def test_main_groups_and_excludes(tmp_path: Path) -> None:
    files = _create_backups(tmp_path, 3)
    companions = []
    for f in files:
        companion = f.with_name(f.name.replace(".tar.gz", ".sha256"))
        companion.write_text("sum")
        os.utime(companion, (f.stat().st_mtime - 60, f.stat().st_mtime - 60))
        companions.append(companion)
    ignored = tmp_path / "keep-me.lock"
    ignored.write_text("x")

    main([str(tmp_path), r"--group=-(\d{8})\.", r"--exclude=\.lock$", "-V", "error"])
    assert [f.exists() for f in files] == [True, False, False]
    assert [c.exists() for c in companions] == [True, False, False]
    assert ignored.exists()


@pytest.mark.parametrize(
    "argv_suffix, exit_code, message",
    [
        (["missing"], 1, "Path not found"),
        ([], 3, "at least one item to keep"),
    ],
)
def test_main_exit_codes_on_bad_targets(tmp_path: Path, capsys: pytest.CaptureFixture[str], argv_suffix: list[str], exit_code: int, message: str) -> None:
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path.joinpath(*argv_suffix))])
    assert exc.value.code == exit_code
    assert message in capsys.readouterr().err


@pytest.mark.parametrize(
    "exception, exit_code",
    [
        (OSError("disk"), 1),
        (ValueError("value"), 2),
        (NothingToKeepError("empty"), 3),
        (ContractViolationError("contract"), 4),
        (UnsafeOperationError("unsafe"), 6),
        (IntegrityCheckFailedError("integrity"), 7),
        (DisposalError(Item("/a/b/c", START), "disposal"), 8),
        (RuntimeError("boom"), 9),
    ],
)
def test_exception_handling(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], exception: Exception, exit_code: int) -> None:
    class FailingRetention:
        def apply(self, target: str) -> None:
            raise exception

    monkeypatch.setattr(backup_retention, "create_retention", lambda args, logger: FailingRetention())
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path)])
    assert exc.value.code == exit_code
    err = capsys.readouterr().err
    assert str(exception) in err
    assert ("[UNEXPECTED ERROR]" in err) == (exit_code == 9)


def test_handle_exception_exits_and_outputs(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        handle_exception(ValueError("boom"), exit_code=3, stacktrace=False)
    assert exc.value.code == 3
    captured = capsys.readouterr()
    assert "[ERROR] boom" in captured.err


def test_main_refuses_shallow_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    items = [Item("/srv/new", START), Item("/srv/old", START - timedelta(days=1))]
    monkeypatch.setattr(backup_retention.Retention, "find_items", lambda self, target: items)
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path)])
    assert exc.value.code == 6
    assert "marked as risky" in capsys.readouterr().err
