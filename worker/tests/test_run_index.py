import json

import pytest

from grubstars.jobs import run_index
from grubstars.jobs.indexer import NoAdaptersConfigured


class DummyIndexer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def index_area(self, location, category=None, limit=None):
        self.calls.append(("index_area", location, category, limit))
        if self.error:
            raise self.error
        return {"total": 1, "created": 1, "merged": 0, "limit": limit, "limit_reached": False}

    def reindex(self, restaurant_id):
        self.calls.append(("reindex", restaurant_id))
        return {"sources_updated": ["yelp"], "sources_failed": [], "changes": {}, "message": "ok"}


@pytest.fixture
def patched(monkeypatch):
    state = {"indexer": DummyIndexer(), "schema": 0, "pool": 0}
    monkeypatch.setattr(run_index, "init_pool", lambda: state.__setitem__("pool", state["pool"] + 1))
    monkeypatch.setattr(run_index, "init_schema", lambda: state.__setitem__("schema", state["schema"] + 1))
    monkeypatch.setattr(run_index, "build_indexer", lambda: state["indexer"])
    return state


def test_run_indexes_location(patched, capsys):
    code = run_index.run(["--location", "barrie, ontario", "--category", "bakery", "--limit", "20"])

    assert code == 0
    assert patched["indexer"].calls == [("index_area", "barrie, ontario", "bakery", 20)]
    assert json.loads(capsys.readouterr().out)["created"] == 1


def test_run_reindexes_restaurant(patched, capsys):
    assert run_index.run(["--reindex", "7"]) == 0
    assert patched["indexer"].calls == [("reindex", 7)]
    assert json.loads(capsys.readouterr().out)["sources_updated"] == ["yelp"]


def test_run_init_db(patched):
    assert run_index.run(["--init-db"]) == 0
    assert patched["schema"] == 1
    assert patched["indexer"].calls == []


def test_run_without_adapters_exits_with_config_error(patched):
    patched["indexer"] = DummyIndexer(error=NoAdaptersConfigured("none"))
    assert run_index.run(["--location", "barrie"]) == 2


def test_run_rejects_non_positive_limit(patched):
    assert run_index.run(["--location", "barrie", "--limit", "0"]) == 2
    assert patched["pool"] == 0


def test_parser_requires_a_target():
    with pytest.raises(SystemExit):
        run_index.build_parser().parse_args([])


def test_main_exits_one_on_unexpected_failure(patched, monkeypatch):
    patched["indexer"] = DummyIndexer(error=RuntimeError("db down"))
    monkeypatch.setattr("sys.argv", ["run_index", "--location", "barrie"])

    with pytest.raises(SystemExit) as excinfo:
        run_index.main()
    assert excinfo.value.code == 1
