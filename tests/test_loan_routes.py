import pytest

from helaloans.core.auth_dependencies import get_current_user


@pytest.fixture
def application_body(profile):
    return {"profile": profile.model_dump(mode="json")}


def _submit(client, body):
    response = client.post("/loans/applications", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_submit_application_computes_limit(client, application_body, audit_calls):
    body = _submit(client, application_body)
    assert body["loan_limit"] == 8400
    assert body["status"] == "pending"
    assert body["selected_amount"] is None
    assert audit_calls[0]["action"] == "create_application"


def test_submit_requires_accepted_terms(client, application_body, borrower):
    from main import app

    app.dependency_overrides[get_current_user] = lambda: {**borrower, "terms_accepted": False}
    response = client.post("/loans/applications", json=application_body)
    assert response.status_code == 403


def test_second_pending_application_conflicts(client, application_body):
    _submit(client, application_body)
    response = client.post("/loans/applications", json=application_body)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "conflict"


@pytest.mark.parametrize("field,value", [
    ("id_number", "12AB"),
    ("whatsapp_number", "0812345678"),
    ("income_tier", "millions"),
])
def test_submit_rejects_invalid_profile(client, application_body, field, value):
    application_body["profile"][field] = value
    response = client.post("/loans/applications", json=application_body)
    assert response.status_code == 422


def test_select_amount_stores_fee(client, application_body):
    application_id = _submit(client, application_body)["application_id"]

    response = client.post(f"/loans/applications/{application_id}/selection", json={"amount": 4200})

    assert response.status_code == 200
    assert response.json()["selected_amount"] == 4200
    assert response.json()["processing_fee"] == 899


@pytest.mark.parametrize("amount", [999, 8401])
def test_select_amount_outside_range_is_rejected(client, application_body, amount):
    application_id = _submit(client, application_body)["application_id"]
    response = client.post(f"/loans/applications/{application_id}/selection", json={"amount": amount})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_select_amount_on_unknown_application(client):
    response = client.post("/loans/applications/missing/selection", json={"amount": 4200})
    assert response.status_code == 404


def test_list_and_get_applications(client, application_body):
    application_id = _submit(client, application_body)["application_id"]

    listing = client.get("/loans/applications")
    assert listing.status_code == 200
    assert listing.json()["total"] == 1

    detail = client.get(f"/loans/applications/{application_id}")
    assert detail.status_code == 200
    assert detail.json()["income_tier"] == "20k-50k"


def test_fee_quote(client):
    response = client.get("/loans/fee-quote", params={"amount": 4200, "loan_limit": 8400})
    assert response.status_code == 200
    assert response.json()["processing_fee"] == 899

    capped = client.get("/loans/fee-quote", params={"amount": 99999, "loan_limit": 8400})
    assert capped.json()["processing_fee"] == 1399
    assert capped.json()["selected_amount"] == 8400


def test_dashboard(client, application_body, balances):
    _submit(client, application_body)
    balances.balances["user-1"] = 300

    response = client.get("/loans/dashboard")

    assert response.status_code == 200
    body = response.json()
    assert len(body["applications"]) == 1
    assert body["suggested_amount"] == 4200
    assert body["savings_balance"] == 300
    assert body["disbursement_eligible"] is True
