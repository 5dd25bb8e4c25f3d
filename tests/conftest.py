import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from ingest.db import engine_for_url  # noqa: E402
from ingest.schema import apply_schema  # noqa: E402
from ingest.types import FetchResult, FetchStrategy  # noqa: E402


class FakeFetcher:
    """Replays scripted responses per URL and records every call.

    ``responses[url]`` is a FetchResult, an exception instance, or a list
    of either consumed one per call (the last entry repeats).
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def open(self, target, strategy, timeout_ms=None, *, params=None, ready_selectors=(), require_ready=False):
        self.calls.append({"url": target, "strategy": strategy, "params": dict(params or {})})
        if target not in self.responses:
            raise AssertionError(f"unexpected fetch of {target}")
        scripted = self.responses[target]
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(scripted, Exception):
            raise scripted
        return scripted

    def urls(self):
        return [c["url"] for c in self.calls]


def html_result(url, html, status=200):
    return FetchResult(url=url, strategy=FetchStrategy.RENDERED_PAGE, status=status, html=html, bytes_read=len(html))


def json_result(url, payload, status=200):
    return FetchResult(url=url, strategy=FetchStrategy.JSON_API, status=status, payload=payload)


class Sleeper:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture()
def db_engine(tmp_path):
    # file-backed so the admin API worker thread sees the same data
    eng = engine_for_url(f"sqlite+pysqlite:///{tmp_path / 'ingest.db'}")
    apply_schema(eng)
    return eng


@pytest.fixture()
def sleeper():
    return Sleeper()
