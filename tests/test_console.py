import pytest

from heartwatch.local import console
from heartwatch.local.config import effective_settings
from heartwatch.local.database import ComponentDBManager


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    data = tmp_path / "data"
    for key, value in {
        "COMPONENT_DB_PATH": data / "components.db",
        "PID_FILE_PATH": data / "heartwatch.pid",
        "STATUS_SNAPSHOT_PATH": data / "status.json",
        "SHUTDOWN_SIGNAL_PATH": data / "shutdown.signal",
        "OVERRIDES_JSON_PATH": data / "overrides.json",
        "REGLIST_PATH": tmp_path / "heartwatch.reglist",
    }.items():
        monkeypatch.setattr(effective_settings, key, value)
    return tmp_path


def stored_ids(workspace):
    return sorted(c.id for c in ComponentDBManager(workspace / "data" / "components.db").load_all())


def test_register_and_unregister_while_stopped(workspace, capsys):
    (workspace / "heartwatch.reglist").write_text("ingest,node1,components.ingest\nrelay,node2,components.relay\n")

    console.execute_command("register", [])
    assert stored_ids(workspace) == ["node1-ingest", "node2-relay"]
    assert "Registered 2 new components" in capsys.readouterr().out

    console.execute_command("unregister", ["node1-ingest"])
    assert stored_ids(workspace) == ["node2-relay"]

    console.execute_command("unregister", ["node1-ingest"])
    assert "No component 'node1-ingest'" in capsys.readouterr().out


def test_components_lists_store_when_stopped(workspace, capsys):
    (workspace / "heartwatch.reglist").write_text("ingest,node1,components.ingest,Producer\n")
    console.execute_command("register", [])
    capsys.readouterr()

    console.execute_command("components", [])
    out = capsys.readouterr().out
    assert "stored, 1" in out
    assert "node1-ingest" in out


def test_status_when_stopped(workspace, capsys):
    console.execute_command("status", [])
    assert "STOPPED" in capsys.readouterr().out


def test_config_set_rejects_protected_setting(workspace, capsys):
    console.execute_command("config", ["set", "PID_FILE_PATH", "/tmp/x"])
    assert "not a modifiable setting" in capsys.readouterr().out


def test_config_set_updates_modifiable_setting(workspace, monkeypatch, capsys):
    monkeypatch.setattr(effective_settings, "STALE_THRESHOLD", 60)
    console.execute_command("config", ["set", "stale_threshold", "90"])

    assert effective_settings.STALE_THRESHOLD == 90
    assert (workspace / "data" / "overrides.json").exists()
    assert "updated to '90'" in capsys.readouterr().out


def test_appmgr_usage(capsys):
    console.execute_command("appmgr", ["ingest", "explode"])
    assert "Usage: appmgr" in capsys.readouterr().out


def test_exit_and_unknown_commands():
    assert console.execute_command("exit", []) is True
    assert console.execute_command("frobnicate", []) is False
    assert console.execute_command("help", []) is False
