from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


def _create_material(client: TestClient, name: str, **fields) -> dict:
    payload = {"masterProductName": name, **fields}
    response = client.post("/api/raw-materials", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _create_finished_good(client: TestClient, name: str, **fields) -> dict:
    response = client.post("/api/finished-goods", json={"masterProductName": name, **fields})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture()
def epoxy(api_client: TestClient) -> dict:
    """A small catalog plus an epoxy base linked to its hardener."""
    resin = _create_material(
        api_client, "Epoxy Resin", RMDensity=1.1, RMSolids=75, SolidDensity=1.17,
        Subcategory="Resin", PurchaseCost=260,
    )
    talc = _create_material(api_client, "Talc", RMDensity=2.75, RMSolids=100, Subcategory="Extender", PurchaseCost=18)
    amide = _create_material(api_client, "Polyamide", RMDensity=0.97, RMSolids=60, Subcategory="Hardener", PurchaseCost=240)
    hardener = _create_finished_good(api_client, "Epoxy Hardener", Subcategory="Hardener")
    base = _create_finished_good(api_client, "Epoxy Base", Subcategory="Base", HardenerID=hardener["masterProductId"])
    return {
        "resin": resin["masterProductId"],
        "talc": talc["masterProductId"],
        "amide": amide["masterProductId"],
        "hardener": hardener["masterProductId"],
        "base": base["masterProductId"],
    }


def _state(epoxy: dict, **overrides) -> dict:
    state = {
        "baseMasterProductId": epoxy["base"],
        "hardenerMasterProductId": epoxy["hardener"],
        "base": [
            {"itemId": "b1", "materialId": epoxy["resin"], "percentage": 50, "totalPercentage": 50, "sequence": 1},
            {"itemId": "b2", "materialId": epoxy["talc"], "percentage": 50, "totalPercentage": 50, "sequence": 2},
        ],
        "hardener": [
            {"itemId": "h1", "materialId": epoxy["amide"], "percentage": 100, "sequence": 1},
        ],
        "baseRatio": 4,
        "hardenerRatio": 1,
    }
    state.update(overrides)
    return state


def test_health_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "running"}


def test_raw_material_lifecycle(api_client: TestClient) -> None:
    material = _create_material(api_client, "Calcite", RMDensity=2.7, RMSolids=100, Subcategory="Extender")
    assert material["masterProductName"] == "Calcite"
    assert material["CanBeAddedMultipleTimes"] is False

    duplicate = api_client.post("/api/raw-materials", json={"masterProductName": "calcite"})
    assert duplicate.status_code == 409

    update = api_client.put(
        f"/api/raw-materials/{material['masterProductId']}", json={"PurchaseCost": 14.5}
    )
    assert update.status_code == 200, update.text
    assert update.json()["PurchaseCost"] == pytest.approx(14.5)
    assert update.json()["RMDensity"] == pytest.approx(2.7)

    listing = api_client.get("/api/raw-materials")
    assert [row["masterProductName"] for row in listing.json()] == ["Calcite"]

    assert api_client.get("/api/raw-materials/9999").status_code == 404


def test_raw_material_rejects_unknown_subcategory(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/raw-materials", json={"masterProductName": "Mystery", "Subcategory": "Pigment"}
    )
    assert response.status_code == 422


def test_metrics_endpoint_with_batch_weights(api_client: TestClient, epoxy: dict) -> None:
    payload = {
        "items": [
            {"materialId": epoxy["talc"], "percentage": 40},
            {"materialId": epoxy["resin"], "percentage": "60"},
        ],
        "plannedQuantity": 250,
    }
    response = api_client.post("/api/formulations/metrics", json=payload)
    assert response.status_code == 200, response.text
    body = response.json()

    metrics = body["metrics"]
    pigment = 40 / 2.75
    binder = 60 * 0.75 / 1.17
    assert metrics["totalPercentage"] == pytest.approx(100.0)
    assert metrics["pvc"] == pytest.approx(pigment / (pigment + binder) * 100)
    assert metrics["cpvc"] == 52.0
    assert metrics["density"] == pytest.approx(100 / (40 / 2.75 + 60 / 1.1))
    assert [row["weightKg"] for row in body["batchWeights"]] == pytest.approx([100.0, 150.0])


def test_two_part_metrics_derive_the_hardener(api_client: TestClient, epoxy: dict) -> None:
    state = _state(
        epoxy,
        base=[
            {"itemId": "b1", "materialId": epoxy["resin"], "percentage": 50, "totalPercentage": 40},
            {"itemId": "b2", "materialId": epoxy["talc"], "percentage": 50, "totalPercentage": 40},
        ],
    )
    response = api_client.post("/api/formulations/two-part/metrics", json=state)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["baseTotal"] == pytest.approx(80.0)
    assert body["hardenerTotal"] == pytest.approx(20.0)
    assert body["state"]["hardener"][0]["wtInLtr"] == pytest.approx(20 / 0.97)


def test_two_part_edit_overshooting_base(api_client: TestClient, epoxy: dict) -> None:
    payload = {"state": _state(epoxy), "itemId": "b1", "field": "totalPercentage", "value": 60}
    response = api_client.post("/api/formulations/two-part/edit", json=payload)
    assert response.status_code == 200, response.text
    body = response.json()

    percentages = [row["percentage"] for row in body["state"]["base"]]
    assert percentages == pytest.approx([60 / 110 * 100, 50 / 110 * 100])
    assert body["baseTotal"] == pytest.approx(110.0)
    assert body["hardenerTotal"] == 0
    assert body["hardenerDisplayPercentages"] == [0.0]
    assert body["state"]["hardener"][0]["percentage"] == 100


def test_full_base_state_keeps_hardener_mixture(api_client: TestClient, epoxy: dict) -> None:
    state = _state(epoxy, baseRatio=1, hardenerRatio=1)
    response = api_client.post("/api/formulations/two-part/metrics", json=state)
    assert response.status_code == 200, response.text
    body = response.json()

    assert body["baseTotal"] == pytest.approx(100.0)
    assert body["state"]["hardener"][0]["percentage"] == 100
    hardener = body["mixture"]["hardener"]
    assert hardener["density"] == pytest.approx(0.97)
    assert body["mixture"]["density"] == pytest.approx((body["mixture"]["base"]["density"] + 0.97) / 2)

    edit = {"state": body["state"], "itemId": "b1", "field": "totalPercentage", "value": 30}
    edited = api_client.post("/api/formulations/two-part/edit", json=edit).json()
    assert edited["hardenerTotal"] == pytest.approx(20.0)
    assert edited["hardenerDisplayPercentages"] == pytest.approx([100.0])


def test_two_part_edit_rejects_derived_column(api_client: TestClient, epoxy: dict) -> None:
    payload = {
        "state": _state(epoxy),
        "itemId": "h1",
        "field": "totalPercentage",
        "value": 10,
        "isHardener": True,
    }
    response = api_client.post("/api/formulations/two-part/edit", json=payload)
    assert response.status_code == 400
    assert "derived" in response.json()["detail"]


def test_two_part_column_total(api_client: TestClient, epoxy: dict) -> None:
    payload = {"state": _state(epoxy), "newTotal": 75}
    response = api_client.post("/api/formulations/two-part/column-total", json=payload)
    assert response.status_code == 200, response.text
    body = response.json()
    assert [row["totalPercentage"] for row in body["state"]["base"]] == pytest.approx([37.5, 37.5])
    assert body["hardenerTotal"] == pytest.approx(25.0)


def test_recipe_falls_back_to_normalized_bom(api_client: TestClient, epoxy: dict) -> None:
    empty = api_client.get(f"/api/recipes/{epoxy['base']}")
    assert empty.status_code == 200
    assert empty.json()["source"] == "empty"
    assert empty.json()["items"] == []

    bom = [
        {"RawMaterialID": epoxy["resin"], "PercentageRequired": 0.55, "Sequence": 1},
        {"RawMaterialID": epoxy["talc"], "PercentageRequired": 0.45, "Sequence": 2},
    ]
    put = api_client.put(f"/api/boms/{epoxy['base']}", json=bom)
    assert put.status_code == 200, put.text
    assert [row["PercentageRequired"] for row in api_client.get(f"/api/boms/{epoxy['base']}").json()] == [0.55, 0.45]

    loaded = api_client.get(f"/api/recipes/{epoxy['base']}").json()
    assert loaded["source"] == "bom"
    assert [row["percentage"] for row in loaded["items"]] == pytest.approx([55.0, 45.0])
    assert loaded["metrics"]["totalPercentage"] == pytest.approx(100.0)


def test_bom_with_unknown_material_is_rejected(api_client: TestClient, epoxy: dict) -> None:
    response = api_client.put(
        f"/api/boms/{epoxy['base']}", json=[{"RawMaterialID": 9999, "PercentageRequired": 1}]
    )
    assert response.status_code == 400
    assert "Unknown raw material" in response.json()["detail"]


def test_save_and_reload_recipe(api_client: TestClient, epoxy: dict) -> None:
    payload = {
        "masterProductId": epoxy["base"],
        "items": [
            {"materialId": epoxy["talc"], "percentage": 40, "sequence": 1, "waitingTime": 5},
            {"materialId": epoxy["resin"], "percentage": 60, "sequence": 2},
        ],
        "viscosity": 95,
        "percentageValue": 0,
        "notes": "lab batch 7",
    }
    response = api_client.post("/api/recipes", json=payload)
    assert response.status_code == 201, response.text
    saved = response.json()
    assert saved["status"] == "Completed"
    assert saved["productName"] == "Epoxy Base"

    loaded = api_client.get(f"/api/recipes/{epoxy['base']}").json()
    assert loaded["source"] == "saved"
    assert loaded["notes"] == "lab batch 7"
    assert [(row["materialId"], row["percentage"], row["waitingTime"]) for row in loaded["items"]] == [
        (epoxy["talc"], 40.0, 5),
        (epoxy["resin"], 60.0, 0),
    ]

    product = api_client.get(f"/api/finished-goods/{epoxy['base']}").json()
    assert product["viscosity"] == 95
    assert product["density"] == pytest.approx(saved["density"])


def test_save_recipe_requires_master_product(api_client: TestClient, epoxy: dict) -> None:
    response = api_client.post("/api/recipes", json={"items": [{"materialId": epoxy["talc"], "percentage": 100}]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please select a Master Product"


def test_two_part_save_links_hardener_and_ratios(api_client: TestClient, epoxy: dict) -> None:
    state = _state(
        epoxy,
        base=[
            {"itemId": "b1", "materialId": epoxy["resin"], "percentage": 50, "totalPercentage": 40},
            {"itemId": "b2", "materialId": epoxy["talc"], "percentage": 50, "totalPercentage": 40},
        ],
    )
    response = api_client.post("/api/recipes/two-part", json={"state": state, "notes": "2K primer"})
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["hardenerId"] == epoxy["hardener"]
    assert body["hardener"]["materials"][0]["totalPercentage"] == pytest.approx(20.0)

    ratios = api_client.get(f"/api/recipes/ratios/{epoxy['base']}/{epoxy['hardener']}").json()
    assert ratios == {"baseRatio": 4.0, "hardenerRatio": 1.0}


def test_two_part_save_gate(api_client: TestClient, epoxy: dict) -> None:
    state = _state(
        epoxy,
        base=[
            {"itemId": "b1", "materialId": epoxy["resin"], "percentage": 50, "totalPercentage": 80},
            {"itemId": "b2", "materialId": epoxy["talc"], "percentage": 50, "totalPercentage": 0},
        ],
    )
    response = api_client.post("/api/recipes/two-part", json={"state": state})
    assert response.status_code == 400
    assert "Total % as 0" in response.json()["detail"]


def test_two_part_save_rejects_unknown_hardener_before_writing(api_client: TestClient, epoxy: dict) -> None:
    state = _state(
        epoxy,
        hardenerMasterProductId=epoxy["talc"],
        base=[
            {"itemId": "b1", "materialId": epoxy["resin"], "percentage": 50, "totalPercentage": 40},
            {"itemId": "b2", "materialId": epoxy["talc"], "percentage": 50, "totalPercentage": 40},
        ],
    )
    response = api_client.post("/api/recipes/two-part", json={"state": state})
    assert response.status_code == 404
    assert response.json() == {"detail": "Master product not found"}

    assert api_client.get(f"/api/recipes/{epoxy['base']}").json()["source"] == "empty"


def test_ratios_default_to_one(api_client: TestClient, epoxy: dict) -> None:
    response = api_client.get(f"/api/recipes/ratios/{epoxy['base']}/{epoxy['hardener']}")
    assert response.status_code == 200
    assert response.json() == {"baseRatio": 1.0, "hardenerRatio": 1.0}


def test_unknown_finished_good_is_404(api_client: TestClient) -> None:
    response = api_client.get("/api/recipes/4242")
    assert response.status_code == 404
    assert response.json() == {"detail": "Master product not found"}


def test_starter_catalog_is_seeded(isolated_db, monkeypatch: pytest.MonkeyPatch) -> None:
    from importlib import import_module

    monkeypatch.setenv("SEED_CATALOG", "1")
    app_module = import_module("paint_formulation.main")
    with TestClient(app_module.app) as client:
        names = [row["masterProductName"] for row in client.get("/api/raw-materials").json()]
        assert "Titanium Dioxide Rutile" in names
        assert len(names) == 9
