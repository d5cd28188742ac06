"""Unit tests for the pointwise_scheduler command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pointwise_scheduler import __main__ as cli
from pointwise_scheduler.__main__ import _create_parser, main

pytestmark = pytest.mark.unit

WEEKLY_RULE = """\
rule:
  frequency: weekly
  days_of_week: [1, 3]
  times_of_day: ["09:00"]
  start_date: 2024-01-01
"""

TEMPLATE = """\
template:
  id: standup
  title: Standup
  time_zone: America/New_York
  rule:
    frequency: weekly
    days_of_week: [1, 3]
    times_of_day: ["09:00"]
    start_date: 2024-01-01
"""


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the CLI from reconfiguring the root logger during tests."""
    monkeypatch.setattr(cli, "_init_logging", lambda level_name: None)
    monkeypatch.setattr(cli, "configure_scheduler_logging", lambda **kwargs: None)


def _write(tmp_path: Path, name: str, text: str) -> str:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_create_parser_when_called_then_returns_parser(self) -> None:
        parser = _create_parser()
        assert parser.prog == "pointwise_scheduler"

    def test_create_parser_when_expand_args_then_dates_parsed(self) -> None:
        args = _create_parser().parse_args(
            ["expand", "--rule", "r.yaml", "--start", "2024-01-01", "--end", "2024-01-15"]
        )
        assert args.command == "expand"
        assert args.start.isoformat() == "2024-01-01"

    def test_create_parser_when_bad_date_then_exits(self) -> None:
        with pytest.raises(SystemExit):
            _create_parser().parse_args(
                ["expand", "--rule", "r.yaml", "--start", "01/01/2024", "--end", "2024-01-15"]
            )

    def test_create_parser_when_no_command_then_exits(self) -> None:
        with pytest.raises(SystemExit):
            _create_parser().parse_args([])


class TestExpandCommand:
    """expand subcommand."""

    def test_main_when_expand_then_prints_occurrences(self, tmp_path, capsys) -> None:
        rule = _write(tmp_path, "rule.yaml", WEEKLY_RULE)

        code = _run(["expand", "--rule", rule, "--start", "2024-01-01", "--end", "2024-01-15"])

        assert code == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert [line.split()[0] for line in lines] == [
            "2024-01-01",
            "2024-01-03",
            "2024-01-08",
            "2024-01-10",
            "2024-01-15",
        ]
        assert lines[0].startswith("2024-01-01 09:00")

    def test_main_when_rule_invalid_then_exit_code_2(self, tmp_path, capsys) -> None:
        rule = _write(tmp_path, "rule.yaml", WEEKLY_RULE.replace("[1, 3]", "[]"))

        code = _run(["expand", "--rule", rule, "--start", "2024-01-01", "--end", "2024-01-15"])

        assert code == 2
        assert "InvalidRule" in capsys.readouterr().err

    def test_main_when_rule_file_missing_then_exit_code_2(self, tmp_path, capsys) -> None:
        code = _run(
            ["expand", "--rule", str(tmp_path / "nope.yaml"), "--start", "2024-01-01", "--end", "2024-01-02"]
        )
        assert code == 2
        assert capsys.readouterr().err.startswith("error:")


class TestMaterializeCommand:
    """materialize subcommand."""

    def test_main_when_materialize_in_memory_then_prints_labels(self, tmp_path, capsys) -> None:
        template = _write(tmp_path, "template.yaml", TEMPLATE)

        code = _run(
            [
                "materialize",
                "--template",
                template,
                "--start",
                "2024-01-01",
                "--end",
                "2024-01-07",
                "--locale",
                "en-GB",
            ]
        )

        assert code == 0
        out = capsys.readouterr().out
        assert "Starts 1 Jan 2024 09:00" in out
        assert "Starts 3 Jan 2024 09:00" in out
        assert len(out.strip().splitlines()) == 2

    def test_main_when_materialize_with_store_then_template_persisted(
        self, tmp_path, capsys
    ) -> None:
        template = _write(tmp_path, "template.yaml", TEMPLATE)
        store_path = tmp_path / "series.json"
        argv = [
            "materialize",
            "--template",
            template,
            "--store",
            str(store_path),
            "--start",
            "2024-01-01",
            "--end",
            "2024-01-07",
            "--time-zone",
            "Europe/London",
        ]

        assert _run(argv) == 0
        assert _run(argv) == 0

        data = json.loads(store_path.read_text(encoding="utf-8"))
        assert list(data["templates"]) == ["standup"]
        assert data["templates"]["standup"]["version"] == 1
        assert "2:00 PM" in capsys.readouterr().out

    def test_main_when_template_zone_invalid_then_exit_code_2(self, tmp_path, capsys) -> None:
        template = _write(
            tmp_path, "template.yaml", TEMPLATE.replace("America/New_York", "Nowhere/Land")
        )

        code = _run(
            ["materialize", "--template", template, "--start", "2024-01-01", "--end", "2024-01-07"]
        )

        assert code == 2
        assert "InvalidTimeZone" in capsys.readouterr().err
