from urllib.parse import quote

from landiq.core.errors import StorageError, ValuationGenerationError


def _body(**overrides):
    body = {
        "propertyDescription": "Level dryland quarter section with good soils",
        "acreage": 80,
        "location": "Hamilton County, NE",
        "tillable": True,
        "cropType": "Corn",
    }
    body.update(overrides)
    return body


async def test_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["timestamp"]
    assert r.headers["X-Request-Id"]


async def test_create_valuation_returns_result_and_stores_row(client, fake_provider):
    r = await client.post("/api/valuations", json=_body())
    assert r.status_code == 200
    data = r.json()
    assert data["valuation"]["totalValue"] == 680000
    assert data["valuation"]["pricePerAcre"] == 8500
    assert data["analysis"]["keyFactors"] == ["Soil productivity", "Local demand"]
    assert data["comparableSales"][0]["sourceUrl"] == "https://example.com/sale"
    assert data["timestamp"]

    assert len(fake_provider.calls) == 1
    assert fake_provider.calls[0].irrigated is False

    recent = (await client.get("/api/valuations/recent")).json()
    assert len(recent) == 1
    row = recent[0]
    assert row["location"] == "Hamilton County, NE"
    assert row["acreage"] == "80"
    assert row["propertyDescription"] == "Level dryland quarter section with good soils"
    assert row["cropType"] == "Corn"
    assert row["p50"] == 8500
    assert row["confidence"] == 0.8
    assert row["createdAt"] == row["updatedAt"]

    single = await client.get(f"/api/valuations/{row['id']}")
    assert single.status_code == 200
    assert single.json()["id"] == row["id"]


async def test_invalid_input_is_400_and_never_reaches_provider(client, fake_provider):
    r = await client.post("/api/valuations", json=_body(acreage=0))
    assert r.status_code == 400
    data = r.json()
    assert data["message"] == "Invalid input data"
    assert [e["field"] for e in data["errors"]] == ["acreage"]
    assert fake_provider.calls == []


async def test_missing_fields_are_listed(client):
    r = await client.post("/api/valuations", json={"acreage": 10})
    assert r.status_code == 400
    fields = {e["field"] for e in r.json()["errors"]}
    assert fields == {"propertyDescription", "location"}


async def test_provider_failure_is_500_with_message(client, fake_provider):
    fake_provider.error = ValuationGenerationError("Failed to generate valuation: upstream timeout")
    r = await client.post("/api/valuations", json=_body())
    assert r.status_code == 500
    assert r.json() == {"message": "Failed to generate valuation: upstream timeout"}

    assert (await client.get("/api/valuations/recent")).json() == []


async def test_storage_failure_is_500(app, client):
    from landiq.routers.valuation import service_dep

    class BrokenService:
        async def recent(self, limit=10):
            raise StorageError("Failed to fetch recent valuations: disk I/O error")

    app.dependency_overrides[service_dep] = lambda: BrokenService()
    r = await client.get("/api/valuations/recent")
    assert r.status_code == 500
    assert r.json()["message"].startswith("Failed to fetch recent valuations")


async def test_unknown_id_is_404(client):
    r = await client.get("/api/valuations/999")
    assert r.status_code == 404
    assert r.json() == {"message": "Valuation not found"}


async def test_recent_respects_limit(client):
    for i in range(4):
        await client.post("/api/valuations", json=_body(propertyDescription=f"Parcel {i} of dryland ground"))

    rows = (await client.get("/api/valuations/recent", params={"limit": 2})).json()
    assert [r["propertyDescription"] for r in rows] == [
        "Parcel 3 of dryland ground",
        "Parcel 2 of dryland ground",
    ]


async def test_location_route_is_exact_match(client):
    await client.post("/api/valuations", json=_body())
    await client.post("/api/valuations", json=_body(location="hamilton county, ne"))
    await client.post("/api/valuations", json=_body(location="York County, NE"))

    r = await client.get("/api/valuations/location/" + quote("Hamilton County, NE"))
    assert r.status_code == 200
    assert [row["location"] for row in r.json()] == ["Hamilton County, NE"]


async def test_agent_endpoint_starts_a_session(client, mock_openai_client):
    from conftest import chat_reply

    mock_openai_client.chat.completions.create.return_value = chat_reply("Happy to help value your land.")
    r = await client.post("/api/agent", json={"message": "hello"})
    assert r.status_code == 200
    data = r.json()
    assert data["message"] == "Happy to help value your land."
    assert data["sessionId"]


async def test_lifespan_creates_tables(app, monkeypatch):
    calls = []

    async def _init_db():
        calls.append("init")

    monkeypatch.setattr("landiq.main.init_db", _init_db)
    async with app.router.lifespan_context(app):
        assert calls == ["init"]
