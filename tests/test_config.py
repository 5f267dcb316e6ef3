import json
from pathlib import Path

import pytest

from heartwatch.local.config import MergedSettings, coerce_setting


def test_defaults_are_loaded(tmp_path):
    settings = MergedSettings(tmp_path / "overrides.json")

    assert settings.STALE_THRESHOLD == 60
    assert settings.get("NOT_A_SETTING", "fallback") == "fallback"


def test_only_modifiable_overrides_apply(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"STALE_THRESHOLD": "90", "PID_FILE_PATH": "/tmp/x.pid", "BOGUS": 1}))

    settings = MergedSettings(path)

    assert settings.STALE_THRESHOLD == 90
    assert settings.PID_FILE_PATH != Path("/tmp/x.pid")
    assert not hasattr(settings, "BOGUS")


def test_corrupt_overrides_are_ignored(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text("{not json")

    assert MergedSettings(path).STALE_THRESHOLD == 60


def test_update_setting_persists(tmp_path):
    path = tmp_path / "overrides.json"
    settings = MergedSettings(path)

    assert settings.update_setting("remediation_enabled", "no") is False
    assert json.loads(path.read_text())["REMEDIATION_ENABLED"] is False
    assert MergedSettings(path).REMEDIATION_ENABLED is False


def test_update_non_modifiable_setting_raises(tmp_path):
    settings = MergedSettings(tmp_path / "overrides.json")

    with pytest.raises(KeyError):
        settings.update_setting("PID_FILE_PATH", "/tmp/x.pid")
    with pytest.raises(ValueError):
        settings.update_setting("STALE_THRESHOLD", "soon")


@pytest.mark.parametrize("original, value, expected", [
    (True, "yes", True),
    (True, "off", False),
    (30, "45", 45),
    (1.5, "2", 2.0),
    (Path("a"), "/tmp/b", Path("/tmp/b")),
    (None, "raw", "raw"),
])
def test_coerce_setting(original, value, expected):
    assert coerce_setting(original, value) == expected
