import json

import pytest

import ingest.run as run
from ingest.pipeline import RunReport, RunState


@pytest.fixture(autouse=True)
def _quiet_cli(monkeypatch):
    # keep stdout to the JSON the commands print
    monkeypatch.setattr(run, "setup_logging", lambda level=None: None)
    monkeypatch.delenv("SCRAPE_SOURCE", raising=False)


def test_parse_args_defaults():
    args = run.parse_args(["discover", "--source", "nsfw247", "--page-to", "2"])

    assert args.command == "discover"
    assert args.page_to == 2
    assert args.page_from is None and args.force is False


def test_tags_fall_back_to_env(monkeypatch):
    monkeypatch.setenv("SCRAPE_TAGS", "cosplay, solo,,")
    assert run._tags(None) == ["cosplay", "solo"]
    assert run._tags("a") == ["a"]


def test_cli_overrides_env(monkeypatch):
    monkeypatch.setenv("SCRAPE_DELAY", "5000")
    args = run.parse_args(["list-media", "--source", "x", "--delay-ms", "100", "--force"])

    cfg = run._config(args)

    assert cfg.delay_ms == 100 and cfg.force_rescrape is True


def _stub_stage(monkeypatch, report, seen):
    def fake_run_stage(engine, source_key, stage, config, **kwargs):
        seen.append((source_key, stage.value, kwargs))
        return report

    monkeypatch.setattr(run, "get_engine", lambda: object())
    monkeypatch.setattr(run, "run_stage", fake_run_stage)


def test_main_exit_code_zero_with_item_errors(monkeypatch, capsys):
    report = RunReport(source="nsfw247", stage="media_listing", state=RunState.COMPLETED, errors=3)
    seen = []
    _stub_stage(monkeypatch, report, seen)

    assert run.main(["list-media", "--source", "nsfw247", "--creator-id", "4"]) == 0
    assert seen == [("nsfw247", "media_listing", {"force_rescrape": False, "creator_id": 4})]
    assert json.loads(capsys.readouterr().out)["errors"] == 3


def test_main_exit_code_one_on_fatal_abort(monkeypatch):
    report = RunReport(
        source="nsfw247", stage="discovery", state=RunState.ABORTED, fatal_error="BrowserUnavailable: x"
    )
    _stub_stage(monkeypatch, report, [])

    assert run.main(["discover", "--source", "nsfw247"]) == 1


def test_main_requires_source_for_runs(monkeypatch):
    monkeypatch.setattr(run, "get_engine", lambda: object())
    assert run.main(["enrich"]) == 2


def test_main_unknown_source(monkeypatch, db_engine):
    monkeypatch.setattr(run, "get_engine", lambda: db_engine)
    assert run.main(["discover", "--source", "nope"]) == 1


def test_status_and_sources_commands(monkeypatch, db_engine, capsys):
    monkeypatch.setattr(run, "get_engine", lambda: db_engine)

    assert run.main(["status"]) == 0
    assert json.loads(capsys.readouterr().out) == {"counts": [], "runs": []}

    assert run.main(["sources"]) == 0
    keys = [s["key"] for s in json.loads(capsys.readouterr().out)]
    assert "xxxfollow" in keys
