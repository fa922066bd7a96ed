from datetime import datetime, timedelta, timezone

import pytest

from visitrack.aggregation import AggregationEngine
from visitrack.app import create_app
from visitrack.resolver import VisitResolver
from visitrack.store import VisitorStore

FIREFOX = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGeo:
    def __init__(self, table=None):
        self.table = dict(table or {})

    def lookup(self, ip):
        return self.table.get(ip)


@pytest.fixture
def clock():
    # Friday
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    store = VisitorStore(str(tmp_path / "visitors.sqlite3"))
    store.ensure_schema()
    return store


@pytest.fixture
def geo():
    return FakeGeo({"1.2.3.4": {"city": "Zurich", "country": "CH"}})


@pytest.fixture
def resolver(store, geo, clock):
    return VisitResolver(store, geo, clock=clock)


@pytest.fixture
def engine(store, clock):
    return AggregationEngine(store, clock=clock)


@pytest.fixture
def app(tmp_path, clock):
    app = create_app(
        db_path=str(tmp_path / "app.sqlite3"),
        geoip_path="",
        clock=clock,
        cors_origins=["https://blog.example"],
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
