"""Tests for CLI parsing and logging setup."""
import json
import logging
import sys

from aranet_sync.main import build_formatter, parse_args


def make_record(msg, exc_info=None):
    return logging.LogRecord("aranet_sync.syncer", logging.WARNING, __file__, 1, msg, None, exc_info)


def test_json_format_escapes_quotes_and_newlines():
    formatter = build_formatter("json")
    message = 'No time series matched query timestamp({job="aranet4"})\nsecond line \\ end'

    line = formatter.format(make_record(message))

    body = json.loads(line)
    assert body["message"] == message
    assert body["levelname"] == "WARNING"
    assert body["name"] == "aranet_sync.syncer"
    assert "\n" not in line


def test_json_format_includes_traceback():
    try:
        raise RuntimeError('bad "value"')
    except RuntimeError:
        record = make_record("Failed to refresh", exc_info=sys.exc_info())

    body = json.loads(build_formatter("json").format(record))

    assert 'RuntimeError: bad "value"' in body["exc_info"]


def test_text_format():
    line = build_formatter("text").format(make_record("Read data: 3 records"))
    assert line.endswith(" | WARNING  | aranet_sync.syncer | Read data: 3 records")


def test_parse_args():
    args = parse_args(["-c", "cfg.yaml", "--verbose", "--dry-run"])
    assert args.config == "cfg.yaml"
    assert args.verbose and args.dry_run
    assert parse_args([]).config is None
