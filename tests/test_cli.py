# tests/test_cli.py
import logging
import zipfile
from logging.handlers import RotatingFileHandler

import pytest

from archivenav import EXTRACTION_ROOT_NAME, ArchiveFormat, InvalidArgument
from archiveshell import configure_logging, main, parse_cli_args, validate_archive_path


def test_parse_cli_args_uses_defaults(monkeypatch):
    for var in ("ARCHIVENAV_SYSTEMIMAGE", "ARCHIVENAV_WORKDIR", "ARCHIVENAV_LOG_LEVEL", "ARCHIVENAV_LOG_DESTINATION"):
        monkeypatch.delenv(var, raising=False)
    args = parse_cli_args([])
    assert args.systemimage is None
    assert args.workdir == "."
    assert args.log_level == "WARNING"
    assert args.log_destination == "stderr"


def test_parse_cli_args_honors_overrides(tmp_path):
    args = parse_cli_args(
        [
            "--systemimage", "bundle.zip",
            "--workdir", str(tmp_path),
            "--log-level", "debug",
            "--log-destination", "nav.log",
        ]
    )
    assert args.systemimage == "bundle.zip"
    assert args.workdir == str(tmp_path)
    assert args.log_level == "DEBUG"
    assert args.log_destination == "nav.log"


def test_parse_cli_args_reads_environment(monkeypatch):
    monkeypatch.setenv("ARCHIVENAV_SYSTEMIMAGE", "from_env.tar")
    monkeypatch.setenv("ARCHIVENAV_LOG_LEVEL", "info")
    args = parse_cli_args([])
    assert args.systemimage == "from_env.tar"
    assert args.log_level == "INFO"


def test_validate_archive_path(make_sample_zip, make_sample_tar, tmp_path):
    assert validate_archive_path(str(make_sample_zip())) is ArchiveFormat.ZIP
    assert validate_archive_path(str(make_sample_tar(gz=True))) is ArchiveFormat.TAR

    with pytest.raises(InvalidArgument, match="not set"):
        validate_archive_path(None)
    with pytest.raises(InvalidArgument, match="does not exist"):
        validate_archive_path(str(tmp_path / "missing.zip"))
    other = tmp_path / "notes.txt"
    other.write_text("x")
    with pytest.raises(InvalidArgument, match="must be .tar or .zip"):
        validate_archive_path(str(other))


def test_main_validation_error(tmp_path, capsys):
    code = main(["--systemimage", str(tmp_path / "missing.zip"), "--workdir", str(tmp_path)])
    assert code == 2
    assert "validation error" in capsys.readouterr().err


def test_main_extraction_failure_is_fatal(tmp_path, capsys):
    bad = tmp_path / "sample.zip"
    bad.write_bytes(b"garbage")
    code = main(["--systemimage", str(bad), "--workdir", str(tmp_path)])
    assert code == 1
    assert "error:" in capsys.readouterr().err
    assert not (tmp_path / EXTRACTION_ROOT_NAME).exists()


def test_configure_logging_stderr():
    logger = configure_logging("debug")
    assert logger.name == "archivenav"
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.StreamHandler)
    # reconfiguring replaces the handler
    logger = configure_logging("error")
    assert len(logger.handlers) == 1
    assert logger.level == logging.ERROR


def test_configure_logging_file(tmp_path):
    target = tmp_path / "logs" / "nav.log"
    logger = configure_logging("INFO", str(target))
    assert isinstance(logger.handlers[0], RotatingFileHandler)
    logging.getLogger("archivenav.core").info("hello from core")
    logger.handlers[0].flush()
    assert "hello from core" in target.read_text()


def test_configure_logging_unknown_level_falls_back():
    assert configure_logging("chatty").level == logging.WARNING
