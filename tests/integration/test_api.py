"""Integration tests for API endpoints"""

import pytest
from datetime import timedelta
from fastapi.testclient import TestClient
from conftest import auth
from merchant_crm.domain.models import PipelineStage
from merchant_crm.infrastructure.database.models import Pipeline
from merchant_crm.utils.date_utils import utcnow

pytestmark = pytest.mark.integration


@pytest.fixture
def merchant_payload():
    return {
        "name": "Sweet Spot",
        "category": "DESSERTS_COFFEE",
        "contactPersonName": "Rania Khoury",
        "contactPhone": "+962795551234",
        "contactEmail": "rania@sweetspot.jo",
        "location": "Abdoun Circle, Amman",
        "description": "Specialty coffee and knafeh",
    }


def _move(client: TestClient, merchant_id, user, stage: str, **extra):
    return client.patch(f"/pipeline/{merchant_id}/stage", json={"stage": stage, **extra}, headers=auth(user))


def _walk_to_won(client: TestClient, merchant_id, user):
    for stage in ("FOLLOW_UP_NEEDED", "CONTRACT_SENT", "WON"):
        response = _move(client, merchant_id, user, stage)
        assert response.status_code == 200
    return response


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "crm_stage_transitions_total" in response.text
    assert "crm_payouts_created_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"


def test_missing_identity_is_unauthenticated(client: TestClient, make_merchant, rep):
    """Requests without X-User-Id are refused with 401"""
    merchant = make_merchant(assigned_to=rep)

    response = client.patch(f"/pipeline/{merchant.id}/stage", json={"stage": "FOLLOW_UP_NEEDED"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated"

    response = client.get("/merchants", headers={"X-User-Id": "not-a-uuid"})
    assert response.status_code == 401


def test_inactive_user_is_unauthenticated(client: TestClient, inactive_rep):
    response = client.get("/merchants", headers=auth(inactive_rep))
    assert response.status_code == 401


def test_rep_registers_merchant(client: TestClient, rep, merchant_payload):
    """POST /merchants assigns the rep and starts the pipeline"""
    response = client.post("/merchants", json=merchant_payload, headers=auth(rep))

    assert response.status_code == 201
    data = response.json()
    assert data["assignedRepId"] == str(rep.id)
    assert data["currentStage"] == "PENDING_FIRST_VISIT"

    pipeline = client.get(f"/pipeline/{data['id']}", headers=auth(rep)).json()
    assert pipeline["currentStage"] == "PENDING_FIRST_VISIT"
    assert pipeline["possibleStages"] == ["FOLLOW_UP_NEEDED", "REJECTED"]
    assert pipeline["isOverdue"] is False
    assert len(pipeline["stageHistory"]) == 1


def test_malformed_body_is_400_with_field_errors(client: TestClient, rep, merchant_payload):
    merchant_payload["category"] = "SPACESHIPS"
    response = client.post("/merchants", json=merchant_payload, headers=auth(rep))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ValidationError"
    assert any(err["field"] == "category" for err in body["details"])


def test_invalid_contact_email_is_400(client: TestClient, rep, merchant_payload):
    merchant_payload["contactEmail"] = "rania-at-sweetspot"
    response = client.post("/merchants", json=merchant_payload, headers=auth(rep))

    assert response.status_code == 400
    assert any(err["field"] == "contactEmail" for err in response.json()["details"])


def test_read_only_cannot_register(client: TestClient, viewer, merchant_payload):
    response = client.post("/merchants", json=merchant_payload, headers=auth(viewer))
    assert response.status_code == 403


def test_stage_change_to_won_creates_onboarding_and_payout(client: TestClient, make_merchant, rep):
    """PATCH /pipeline/{id}/stage through to WON"""
    merchant = make_merchant(assigned_to=rep)

    response = _walk_to_won(client, merchant.id, rep)
    data = response.json()
    assert data["previousStage"] == "CONTRACT_SENT"
    assert data["pipeline"]["currentStage"] == "WON"
    assert data["pipeline"]["possibleStages"] == ["REJECTED"]
    assert data["onboardingCreated"] is True
    assert data["payoutId"] is not None
    assert data["message"] == "Merchant moved to WON stage successfully"

    onboarding = client.get(f"/onboarding/{merchant.id}", headers=auth(rep)).json()
    assert onboarding["status"] == "IN_PROGRESS"
    assert onboarding["completionPercentage"] == 0.0
    assert set(onboarding["requirementBreakdown"]) == {
        "surveyFilled",
        "offersAdded",
        "branchesCovered",
        "assetsComplete",
    }

    payouts = client.get("/payouts", headers=auth(rep)).json()
    assert payouts["total"] == 1
    assert payouts["payouts"][0]["type"] == "WON"
    assert payouts["payouts"][0]["amount"] == 9.0
    assert payouts["totalAmount"] == 9.0


def test_invalid_transition_is_400_with_allowed_stages(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)

    response = _move(client, merchant.id, rep, "WON")

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidTransition"
    assert body["details"]["allowedStages"] == ["FOLLOW_UP_NEEDED", "REJECTED"]


def test_same_stage_is_400(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)

    response = _move(client, merchant.id, rep, "PENDING_FIRST_VISIT")

    assert response.status_code == 400
    assert response.json()["error"] == "AlreadyInStage"


def test_reject_without_notes_is_400(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)

    response = _move(client, merchant.id, rep, "REJECTED")
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "notes"

    response = _move(client, merchant.id, rep, "REJECTED", notes="Closed the shop")
    assert response.status_code == 200
    assert response.json()["pipeline"]["nextActionDate"] is None


def test_other_rep_gets_403_and_unknown_merchant_404(client: TestClient, make_merchant, rep, other_rep):
    merchant = make_merchant(assigned_to=rep)

    response = _move(client, merchant.id, other_rep, "FOLLOW_UP_NEEDED")
    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"

    response = _move(client, "00000000-0000-0000-0000-000000000000", rep, "FOLLOW_UP_NEEDED")
    assert response.status_code == 404


def test_past_next_action_date_is_400(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)
    yesterday = (utcnow() - timedelta(days=1)).isoformat()

    response = _move(client, merchant.id, rep, "FOLLOW_UP_NEEDED", nextActionDate=yesterday)

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "nextActionDate"


def test_update_next_action(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)
    when = (utcnow() + timedelta(days=3)).isoformat()

    response = client.patch(
        f"/pipeline/{merchant.id}/next-action",
        json={"nextActionDescription": "Drop off the contract", "nextActionDate": when},
        headers=auth(rep),
    )

    assert response.status_code == 200
    assert response.json()["nextActionDescription"] == "Drop off the contract"
    assert response.json()["currentStage"] == "PENDING_FIRST_VISIT"


def test_overdue_list(client: TestClient, db, make_merchant, rep, other_rep, admin):
    """Past-due reminders show up for the owning rep and admins only"""
    late = make_merchant(assigned_to=rep, name="Late Cafe")
    make_merchant(assigned_to=rep, name="On Time Cafe")
    pipeline = db.query(Pipeline).filter_by(merchant_id=late.id).one()
    pipeline.next_action_date = utcnow() - timedelta(days=2, hours=1)
    db.commit()

    data = client.get("/pipeline/overdue", headers=auth(rep)).json()
    assert data["total"] == 1
    assert data["items"][0]["merchantName"] == "Late Cafe"
    assert data["items"][0]["daysPastDue"] == 3

    assert client.get("/pipeline/overdue", headers=auth(other_rep)).json()["total"] == 0
    assert client.get("/pipeline/overdue", headers=auth(admin)).json()["total"] == 1


def test_conversion_stats(client: TestClient, make_merchant, rep, admin):
    won = make_merchant(assigned_to=rep, name="Won Cafe")
    rejected = make_merchant(assigned_to=rep, name="Rejected Cafe")
    make_merchant(assigned_to=rep, name="Pending Cafe")
    _walk_to_won(client, won.id, rep)
    _move(client, rejected.id, rep, "REJECTED", notes="Not a fit")

    data = client.get("/pipeline/stats/conversion", headers=auth(admin)).json()

    assert data["totalMerchants"] == 3
    assert data["activeMerchants"] == 2
    assert data["wonCount"] == 1
    assert data["rejectedCount"] == 1
    assert data["liveCount"] == 0
    assert data["conversionRates"]["wonRate"] == 50
    assert data["stageDistribution"]["WON"] == {"count": 1, "percentage": 33}


def test_stage_share_rounds_halves_up(client: TestClient, make_merchant, rep, admin):
    """One WON merchant out of eight (12.5%) reports 13, not 12"""
    won = make_merchant(assigned_to=rep, name="Won Cafe")
    for n in range(7):
        make_merchant(assigned_to=rep, name=f"Pending Cafe {n}")
    _walk_to_won(client, won.id, rep)

    data = client.get("/pipeline/stats/conversion", headers=auth(admin)).json()

    assert data["totalMerchants"] == 8
    assert data["stageDistribution"]["WON"] == {"count": 1, "percentage": 13}
    assert data["stageDistribution"]["PENDING_FIRST_VISIT"] == {"count": 7, "percentage": 88}


def test_onboarding_to_live_creates_live_payout(client: TestClient, make_merchant, rep, admin):
    """Checklist complete -> READY_FOR_QA -> admin approval -> LIVE with payout"""
    merchant = make_merchant(assigned_to=rep)
    _walk_to_won(client, merchant.id, rep)

    response = client.patch(
        f"/onboarding/{merchant.id}",
        json={"surveyFilled": True, "offersAdded": True, "branchesCovered": True, "assetsComplete": True},
        headers=auth(rep),
    )
    assert response.status_code == 200
    assert response.json()["onboarding"]["status"] == "READY_FOR_QA"

    queue = client.get("/onboarding/pending-qa", headers=auth(admin)).json()
    assert queue["total"] == 1
    assert queue["items"][0]["completionPercentage"] == 100

    response = client.patch(f"/onboarding/{merchant.id}", json={"qaApproved": True}, headers=auth(admin))
    data = response.json()
    assert response.status_code == 200
    assert data["wentLive"] is True
    assert data["onboarding"]["status"] == "LIVE"
    assert data["onboarding"]["liveDate"] is not None
    assert data["onboarding"]["canGoLive"] is True
    assert data["payoutId"] is not None
    assert data["message"] == "Merchant is now LIVE! Payout has been created."

    payouts = client.get("/payouts", params={"type": "LIVE"}, headers=auth(rep)).json()
    assert payouts["total"] == 1
    assert payouts["payouts"][0]["amount"] == 7.0


def test_rep_qa_approval_is_ignored(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)
    _walk_to_won(client, merchant.id, rep)

    response = client.patch(
        f"/onboarding/{merchant.id}",
        json={"surveyFilled": True, "qaApproved": True},
        headers=auth(rep),
    )

    data = response.json()
    assert response.status_code == 200
    assert data["qaUpdateIgnored"] is True
    assert data["onboarding"]["qaApproved"] is None
    assert data["onboarding"]["surveyFilled"] is True


def test_onboarding_update_requires_won(client: TestClient, db, make_merchant, rep, admin):
    merchant = make_merchant(assigned_to=rep)
    _walk_to_won(client, merchant.id, rep)
    _move(client, merchant.id, admin, "REJECTED", notes="Owner changed their mind")

    response = client.patch(f"/onboarding/{merchant.id}", json={"surveyFilled": True}, headers=auth(rep))

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidState"


def test_pending_qa_and_status_override_are_admin_only(client: TestClient, make_merchant, rep, admin):
    merchant = make_merchant(assigned_to=rep)
    _walk_to_won(client, merchant.id, rep)

    assert client.get("/onboarding/pending-qa", headers=auth(rep)).status_code == 403

    response = client.patch(f"/onboarding/{merchant.id}/status", json={"status": "LIVE"}, headers=auth(rep))
    assert response.status_code == 403

    response = client.patch(
        f"/onboarding/{merchant.id}/status",
        json={"status": "IN_PROGRESS"},
        headers=auth(admin),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "AlreadyInStatus"


def test_admin_reassigns_and_deletes(client: TestClient, make_merchant, rep, other_rep, admin):
    merchant = make_merchant(assigned_to=rep)

    response = client.patch(
        f"/merchants/{merchant.id}/assignment",
        json={"assignedRepId": str(other_rep.id)},
        headers=auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["assignedRepId"] == str(other_rep.id)
    assert client.get(f"/merchants/{merchant.id}", headers=auth(rep)).status_code == 403

    response = client.delete(f"/merchants/{merchant.id}", headers=auth(admin))
    assert response.status_code == 200
    assert response.json()["deletedAt"] is not None
    assert response.json()["contactEmail"] is None

    assert client.get(f"/merchants/{merchant.id}", headers=auth(admin)).status_code == 404
    assert client.get("/merchants", headers=auth(admin)).json()["total"] == 0


def test_reps_list_only_their_merchants(client: TestClient, make_merchant, rep, other_rep):
    make_merchant(assigned_to=rep, name="Mine")
    make_merchant(assigned_to=other_rep, name="Theirs")

    data = client.get("/merchants", headers=auth(rep)).json()
    assert [m["name"] for m in data["merchants"]] == ["Mine"]

    data = client.get("/merchants", params={"stage": PipelineStage.WON.value}, headers=auth(rep)).json()
    assert data["total"] == 0


def test_update_merchant_profile(client: TestClient, make_merchant, rep, other_rep):
    """PUT /merchants/{id} changes the fields sent and ignores a rep's assignedRepId"""
    merchant = make_merchant(assigned_to=rep)

    response = client.put(
        f"/merchants/{merchant.id}",
        json={"contactEmail": "lina@cafenero.jo", "assignedRepId": str(other_rep.id)},
        headers=auth(rep),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["contactEmail"] == "lina@cafenero.jo"
    assert data["assignedRepId"] == str(rep.id)
    assert data["name"] == "Cafe Nero"

    assert client.put(f"/merchants/{merchant.id}", json={}, headers=auth(rep)).status_code == 400
    response = client.put(f"/merchants/{merchant.id}", json={"name": "Mine now"}, headers=auth(other_rep))
    assert response.status_code == 403


def test_merchant_overview(client: TestClient, make_merchant, rep, other_rep, admin):
    won = make_merchant(assigned_to=rep, name="Won Cafe")
    make_merchant(assigned_to=rep, name="Pending Cafe")
    make_merchant(assigned_to=other_rep, name="Their Cafe")
    _walk_to_won(client, won.id, rep)
    client.patch(f"/onboarding/{won.id}/status", json={"status": "LIVE"}, headers=auth(admin))

    data = client.get("/merchants/stats/overview", headers=auth(rep)).json()
    assert data["totalMerchants"] == 2
    assert data["liveCount"] == 1
    assert data["conversionRate"] == 50
    assert data["pipelineDistribution"] == {"WON": 1, "PENDING_FIRST_VISIT": 1}
    assert data["categoryDistribution"] == {"DESSERTS_COFFEE": 2}

    data = client.get("/merchants/stats/overview", headers=auth(admin)).json()
    assert data["totalMerchants"] == 3
    assert data["conversionRate"] == 33


def test_onboarding_progress(client: TestClient, make_merchant, rep, admin):
    first = make_merchant(assigned_to=rep, name="First")
    second = make_merchant(assigned_to=rep, name="Second")
    for merchant in (first, second):
        _walk_to_won(client, merchant.id, rep)
    client.patch(f"/onboarding/{first.id}", json={"surveyFilled": True, "offersAdded": True}, headers=auth(rep))

    data = client.get("/onboarding/stats/progress", headers=auth(rep)).json()

    assert data["total"] == 2
    assert data["statusDistribution"]["IN_PROGRESS"]["count"] == 2
    assert data["statusDistribution"]["IN_PROGRESS"]["percentage"] == 100
    assert data["requirementCompletion"]["surveyFilled"] == {"completed": 1, "total": 2, "percentage": 50}
    assert data["requirementCompletion"]["assetsComplete"] == {"completed": 0, "total": 2, "percentage": 0}


def test_activity_lifecycle(client: TestClient, make_merchant, rep, other_rep):
    """Log, read, edit, list and delete an activity over HTTP"""
    merchant = make_merchant(assigned_to=rep)

    response = client.post(
        "/activities",
        json={
            "merchantId": str(merchant.id),
            "type": "MEETING",
            "summary": "Walked the owner through the app",
            "outcome": "POSITIVE",
            "duration": 45,
        },
        headers=auth(rep),
    )
    assert response.status_code == 201
    activity = response.json()
    assert activity["merchantName"] == "Cafe Nero"
    assert activity["duration"] == 45
    assert activity["completedDate"] is not None

    response = client.get(f"/activities/{activity['id']}", headers=auth(other_rep))
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied to this activity"

    response = client.put(f"/activities/{activity['id']}", json={"outcome": "FOLLOW_UP_NEEDED"}, headers=auth(rep))
    assert response.status_code == 200
    assert response.json()["outcome"] == "FOLLOW_UP_NEEDED"

    data = client.get(f"/activities/merchant/{merchant.id}", headers=auth(rep)).json()
    assert data["meta"] == {
        "page": 1,
        "limit": 20,
        "total": 1,
        "totalPages": 1,
        "hasNext": False,
        "hasPrev": False,
    }

    response = client.delete(f"/activities/{activity['id']}", headers=auth(rep))
    assert response.status_code == 200
    assert response.json()["message"] == "Activity deleted successfully"
    assert client.get(f"/activities/{activity['id']}", headers=auth(rep)).status_code == 404


def test_activity_validation_errors(client: TestClient, make_merchant, rep):
    merchant = make_merchant(assigned_to=rep)
    tomorrow = (utcnow() + timedelta(days=1)).isoformat()

    response = client.post(
        "/activities",
        json={"merchantId": str(merchant.id), "type": "CALL", "summary": "Hi"},
        headers=auth(rep),
    )
    assert response.status_code == 400
    assert any(err["field"] == "summary" for err in response.json()["details"])

    response = client.post(
        "/activities",
        json={"merchantId": str(merchant.id), "type": "CALL", "summary": "Called again", "completedDate": tomorrow},
        headers=auth(rep),
    )
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "completedDate"

    response = client.post(
        "/activities",
        json={"merchantId": str(merchant.id), "type": "CALL", "summary": "Long call", "duration": 600},
        headers=auth(rep),
    )
    assert response.status_code == 400


def test_activity_list_paging_and_summary(client: TestClient, make_merchant, rep, admin):
    merchant = make_merchant(assigned_to=rep)
    for n in range(3):
        client.post(
            "/activities",
            json={"merchantId": str(merchant.id), "type": "CALL", "summary": f"Check-in call {n}"},
            headers=auth(rep),
        )

    data = client.get("/activities", params={"page": 2, "limit": 2}, headers=auth(rep)).json()
    assert len(data["activities"]) == 1
    assert data["meta"]["totalPages"] == 2
    assert data["meta"]["hasPrev"] is True
    assert data["meta"]["hasNext"] is False

    summary = client.get("/activities/stats/summary", headers=auth(rep)).json()
    assert summary["totalActivities"] == 3
    assert summary["recentActivities"] == 3
    assert summary["avgActivitiesPerMerchant"] == 3.0
    assert summary["typeDistribution"] == {"CALL": 3}
    assert summary["outcomeDistribution"] == {}

    response = client.get(f"/activities/rep/{rep.id}/performance", headers=auth(rep))
    assert response.status_code == 403
    data = client.get(f"/activities/rep/{rep.id}/performance", headers=auth(admin)).json()
    assert data["rep"]["id"] == str(rep.id)
    assert data["metrics"] == {"totalActivities": 3, "assignedMerchants": 1, "avgActivitiesPerMerchant": 3.0}
    assert data["breakdown"]["byType"] == {"CALL": 3}
