from grubstars.core import bootstrap
from grubstars.core.config import Settings
from grubstars.jobs.indexer import IndexingOrchestrator


def test_adapters_follow_priority_order():
    settings = Settings(database_url="", yelp_api_key="y", tripadvisor_api_key="t")

    adapters = bootstrap.build_adapters(settings)

    assert [adapter.source_name for adapter in adapters] == ["yelp", "google", "tripadvisor"]
    assert [adapter.configured() for adapter in adapters] == [True, False, True]


def test_build_orchestrator_skips_unconfigured():
    settings = Settings(database_url="", google_api_key="g")

    orchestrator = bootstrap.build_orchestrator(settings, rate_tracker=object())

    assert isinstance(orchestrator, IndexingOrchestrator)
    assert [adapter.source_name for adapter in orchestrator.configured_adapters()] == ["google"]


def test_prepare_database_sizes_pool_for_workers(monkeypatch):
    calls = []
    monkeypatch.setattr(bootstrap, "init_pool", lambda maxconn: calls.append(maxconn))
    monkeypatch.setattr(bootstrap, "ensure_schema", lambda: calls.append("schema"))

    bootstrap.prepare_database(Settings(database_url="postgres://localhost/db", job_workers=4))

    assert calls == [8, "schema"]
