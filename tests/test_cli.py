import json
from pathlib import Path

from typer.testing import CliRunner

from roost import __version__, cli


def _json_lines(output: str) -> list[dict]:
    rows = []
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if "type" in data:
            rows.append(data)
    return rows


def test_version() -> None:
    result = CliRunner().invoke(cli.create_app(), ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_check_config_prints_settings(tmp_path: Path) -> None:
    config = tmp_path / "roost.toml"
    config.write_text("[flood]\nceiling = 7\n[permissions]\nadmin = [1]\n")

    result = CliRunner().invoke(
        cli.create_app(), ["check-config", "--config", str(config)]
    )

    assert result.exit_code == 0
    assert "flood.ceiling" in result.output
    assert "7.0" in result.output
    assert "permissions.admin" in result.output


def test_check_config_reports_errors(tmp_path: Path) -> None:
    config = tmp_path / "roost.toml"
    config.write_text("[flood]\nceiling = 0\n")

    result = CliRunner().invoke(
        cli.create_app(), ["check-config", "--config", str(config)]
    )

    assert result.exit_code == 1
    assert "flood.ceiling" in result.output


def test_replay_prints_requests_and_events(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("ROOST_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    updates = tmp_path / "updates.jsonl"
    updates.write_text(
        "\n".join(
            [
                '{"update_id": 1, "chat_id": 42, "user_id": 7, "payload": {"type": "message", "message_id": 1, "text": "/echo hi"}}',
                '{"update_id": 2, "chat_id": 42, "user_id": 7, "payload": {"type": "message", "message_id": 2, "text": "ignored"}}',
                '{"update_id": 3, "chat_id": 42, "user_id": 7, "payload": {"type": "message", "message_id": 3, "text": "/echo again"}}',
            ]
        ),
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        cli.create_app(),
        ["replay", str(updates), "--app", "tests.replay_app:setup"],
    )

    assert result.exit_code == 0, result.output
    rows = _json_lines(result.stdout)
    assert [row["type"] for row in rows] == ["session.created", "request", "request"]
    assert [row["request"]["text"] for row in rows if row["type"] == "request"] == [
        "hi",
        "again",
    ]


def test_replay_rejects_bad_app_ref(tmp_path: Path) -> None:
    updates = tmp_path / "updates.jsonl"
    updates.write_text("")

    for ref in ("nocolon", "tests.replay_app:missing", "tests.replay_app:not_callable"):
        result = CliRunner().invoke(
            cli.create_app(), ["replay", str(updates), "--app", ref]
        )
        assert result.exit_code != 0


def test_replay_missing_updates_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli.create_app(),
        ["replay", str(tmp_path / "missing.jsonl"), "--app", "tests.replay_app:setup"],
    )

    assert result.exit_code == 1
