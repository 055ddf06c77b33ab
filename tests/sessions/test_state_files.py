from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta

import pytest

from stepwatch.sessions import StateFiles


@pytest.fixture
def files(tmp_path) -> StateFiles:
    return StateFiles(tmp_path / "state.json", tmp_path / "state.partial.json", max_age_hours=8)


def _touch(path, when: datetime) -> None:
    path.write_text(json.dumps({"cookies": [{"name": "sid", "value": "abc"}]}), encoding="utf-8")
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


def test_check_without_state_file(files: StateFiles) -> None:
    status = files.check()
    assert status.logged_in is False
    assert status.has_state is False
    assert status.to_wire() == {"loggedIn": False, "hasState": False}


def test_fresh_state_counts_as_logged_in(files: StateFiles) -> None:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    _touch(files.state_file, now - timedelta(hours=2, minutes=6))
    status = files.check(now=now)
    assert status.logged_in is True
    assert status.has_state is True
    assert status.hours_age == 2.1


def test_stale_state_is_not_logged_in(files: StateFiles) -> None:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    _touch(files.state_file, now - timedelta(hours=9))
    status = files.check(now=now)
    assert status.logged_in is False
    assert status.has_state is True
    assert status.last_login is not None


def test_promote_partial_replaces_final_file(files: StateFiles) -> None:
    files.partial_file.write_text(json.dumps({"cookies": [{"name": "sid"}], "origins": []}), encoding="utf-8")
    files.promote_partial()
    assert files.state_file.exists()
    assert not files.partial_file.exists()
    assert json.loads(files.state_file.read_text(encoding="utf-8"))["cookies"] == [{"name": "sid"}]


@pytest.mark.parametrize("payload", ['{"cookies": []}', '{"origins": []}', "not json", "[]"])
def test_promote_partial_rejects_unusable_capture(files: StateFiles, payload: str) -> None:
    files.partial_file.write_text(payload, encoding="utf-8")
    with pytest.raises(ValueError):
        files.promote_partial()
    assert not files.partial_file.exists()
    assert not files.state_file.exists()


def test_promote_partial_without_capture_raises_oserror(files: StateFiles) -> None:
    with pytest.raises(OSError):
        files.promote_partial()


def test_clear_is_idempotent(files: StateFiles) -> None:
    _touch(files.state_file, datetime.now(UTC))
    first = files.clear()
    second = files.clear()
    assert first.success is True
    assert first.message == "Session state cleared."
    assert second.success is True
    assert second.message == "Session state was already clear."
    assert files.check().has_state is False
