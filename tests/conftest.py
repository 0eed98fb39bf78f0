import sys, os
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import main
from main import app, get_nasa_client, NASAClient, Settings

TODAY = date(2024, 5, 10)


class FakeNASA:
    """Stands in for api.nasa.gov and images-api.nasa.gov.

    Routes are keyed by URL path; a route is either an httpx.Response or a
    callable taking the request. Unknown paths answer 404 the way NASA does.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, path, response):
        self.routes[path] = response

    def json(self, path, payload, status_code=200):
        self.add(path, httpx.Response(status_code, json=payload))

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request):
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": {"code": "NOT_FOUND", "message": "No such resource"}})
        if callable(route):
            return route(request)
        return route


@pytest.fixture
def fake_nasa():
    return FakeNASA()


@pytest.fixture
def settings():
    s = Settings()
    s.nasa_api_key = "TEST_KEY"
    s.request_delay = 0
    return s


@pytest.fixture
def nasa_client(settings, fake_nasa):
    return NASAClient(settings, transport=httpx.MockTransport(fake_nasa.handler))


@pytest.fixture
def client(nasa_client, monkeypatch):
    monkeypatch.setattr(main, "utc_today", lambda: TODAY)
    main.limiter.reset()
    app.dependency_overrides[get_nasa_client] = lambda: nasa_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_neo(neo_id, name, hazardous=False, miss_km="1000000.0", approach_date="2024-05-10"):
    return {
        "id": neo_id,
        "name": name,
        "is_potentially_hazardous_asteroid": hazardous,
        "close_approach_data": [
            {
                "close_approach_date": approach_date,
                "miss_distance": {"kilometers": miss_km, "astronomical": "0.01"},
                "relative_velocity": {"kilometers_per_second": "12.5"},
                "orbiting_body": "Earth",
            }
        ],
    }
