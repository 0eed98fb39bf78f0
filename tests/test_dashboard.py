import httpx

from conftest import make_neo


def _apod_by_date(published):
    def apod(request):
        day = request.url.params.get("date")
        if day in published:
            return httpx.Response(200, json={"date": day, "title": published[day]})
        return httpx.Response(404, json={"code": 404, "msg": f"No data available for date: {day}"})
    return apod


def _photos_by_sol(available):
    def photos(request):
        sol = int(request.url.params["sol"])
        return httpx.Response(200, json={"photos": available.get(sol, [])})
    return photos


def test_dashboard_everything_available(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-10": "Today"}))
    fake_nasa.json("/neo/rest/v1/feed", {"element_count": 1, "near_earth_objects": {"2024-05-10": [make_neo("1", "a")]}})
    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", _photos_by_sol({4000: [{"id": 1}]}))

    r = client.get("/api/nasa/dashboard")

    assert r.status_code == 200
    data = r.json()["data"]
    assert data["apod"]["title"] == "Today"
    assert data["neoData"]["element_count"] == 1
    assert data["marsRoverData"] == {"photos": [{"id": 1}]}
    assert data["errors"] == {"apod": None, "marsRoverData": None, "neoData": None}

    feed = fake_nasa.calls("/neo/rest/v1/feed")[0].url.params
    assert (feed["start_date"], feed["end_date"]) == ("2024-05-10", "2024-05-10")
    assert len(fake_nasa.calls("/mars-photos/api/v1/rovers/curiosity/photos")) == 1


def test_dashboard_apod_falls_back_to_yesterday(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-09": "Yesterday"}))
    fake_nasa.json("/neo/rest/v1/feed", {"near_earth_objects": {}})
    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", _photos_by_sol({4000: [{"id": 1}]}))

    data = client.get("/api/nasa/dashboard").json()["data"]

    assert data["apod"]["title"] == "Yesterday"
    assert data["errors"]["apod"] is None
    assert [r.url.params["date"] for r in fake_nasa.calls("/planetary/apod")] == ["2024-05-10", "2024-05-09"]


def test_dashboard_apod_reports_second_failure(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({}))
    fake_nasa.json("/neo/rest/v1/feed", {"near_earth_objects": {}})
    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", _photos_by_sol({4000: [{"id": 1}]}))

    data = client.get("/api/nasa/dashboard").json()["data"]

    assert data["apod"] is None
    assert data["errors"]["apod"] == "NASA API Error: 404 - No data available for date: 2024-05-09"


def test_dashboard_mars_tries_older_sol_when_empty(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-10": "Today"}))
    fake_nasa.json("/neo/rest/v1/feed", {"near_earth_objects": {}})
    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", _photos_by_sol({3500: [{"id": 35}]}))

    data = client.get("/api/nasa/dashboard").json()["data"]

    assert data["marsRoverData"] == {"photos": [{"id": 35}]}
    sols = [r.url.params["sol"] for r in fake_nasa.calls("/mars-photos/api/v1/rovers/curiosity/photos")]
    assert sols == ["4000", "3500"]


def test_dashboard_mars_empty_everywhere_is_not_an_error(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-10": "Today"}))
    fake_nasa.json("/neo/rest/v1/feed", {"near_earth_objects": {}})
    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", _photos_by_sol({}))

    data = client.get("/api/nasa/dashboard").json()["data"]

    assert data["marsRoverData"] == {"photos": []}
    assert data["errors"]["marsRoverData"] is None


def test_dashboard_partial_failures_still_200(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-10": "Today"}))
    fake_nasa.json("/neo/rest/v1/feed", {"error": {"message": "API rate limit exceeded"}}, 429)

    def down(request):
        raise httpx.ConnectError("unreachable", request=request)

    fake_nasa.add("/mars-photos/api/v1/rovers/curiosity/photos", down)

    r = client.get("/api/nasa/dashboard")

    assert r.status_code == 200
    data = r.json()["data"]
    assert data["apod"]["title"] == "Today"
    assert data["neoData"] is None
    assert data["marsRoverData"] is None
    assert data["errors"] == {
        "apod": None,
        "neoData": "NASA API Error: 429 - API rate limit exceeded",
        "marsRoverData": "NASA API Error: No response received",
    }


def test_dashboard_unexpected_shapes_become_field_errors(client, fake_nasa):
    fake_nasa.add("/planetary/apod", _apod_by_date({"2024-05-10": "Today"}))
    fake_nasa.json("/neo/rest/v1/feed", ["not", "a", "feed"])
    fake_nasa.json("/mars-photos/api/v1/rovers/curiosity/photos", ["unexpected"])

    r = client.get("/api/nasa/dashboard")

    assert r.status_code == 200
    data = r.json()["data"]
    assert data["apod"]["title"] == "Today"
    assert data["marsRoverData"] is None
    assert data["neoData"] is None
    assert data["errors"]["marsRoverData"] == "NASA API Error: Unexpected response format"
    assert data["errors"]["neoData"] == "NASA API Error: Unexpected response format"
