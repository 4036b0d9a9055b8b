import pytest
from fastapi.testclient import TestClient

from common.config import MergeConfig
from serving.api import create_app

from conftest import BEHAVIORAL_VERSION


@pytest.fixture
def client(make_service):
    service = make_service()
    with TestClient(create_app(lambda: service)) as client:
        yield client


def test_rank_returns_ordered_payload(client):
    response = client.post(
        "/rank",
        json={"user_id": 1, "candidates": [1, 3, 2], "context": {"surface": "home", "locale": "en-US"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ranked"] == [
        {"item_id": 3, "score": pytest.approx(0.3)},
        {"item_id": 2, "score": pytest.approx(0.2)},
        {"item_id": 1, "score": pytest.approx(0.1)},
    ]
    assert body["model_version"] == "stub-v1"
    assert body["diagnostics"]["mode"] == "primary"


def test_rank_unknown_items_have_null_scores(client):
    response = client.post("/rank", json={"user_id": 1, "candidates": [424242, 1]})

    assert response.status_code == 200
    assert response.json()["ranked"][-1] == {"item_id": 424242, "score": None}


def test_rank_empty_candidates(client):
    response = client.post("/rank", json={"user_id": 1, "candidates": []})
    assert response.status_code == 200
    assert response.json()["ranked"] == []


@pytest.mark.parametrize(
    "payload",
    [
        {"candidates": [1, 2]},
        {"user_id": "abc", "candidates": [1]},
        {"user_id": 1, "candidates": [1], "k": 0},
    ],
)
def test_rank_invalid_payload_is_422(client, payload):
    assert client.post("/rank", json=payload).status_code == 422


def test_recommend_full_pipeline(client):
    response = client.post(
        "/recommend",
        json={"query": "running shoes", "user_id": 1, "context": {"surface": "search"}, "k": 5},
    )

    assert response.status_code == 200
    body = response.json()
    assert [item["item_id"] for item in body["ranked"]] == [9, 8, 7, 6, 5]
    assert body["diagnostics"]["rerank"]["applied"] is True
    assert body["diagnostics"]["candidates"]["variants"][0] == "running shoes"


def test_recommend_k_above_limit_is_422(client):
    response = client.post("/recommend", json={"query": "shoes", "user_id": 1, "k": 500})
    assert response.status_code == 422


def test_unknown_index_version_is_500(make_service):
    service = make_service(merge_config=MergeConfig(
        candidate_width=12,
        content_index_version="content-v9",
        behavioral_index_version=BEHAVIORAL_VERSION,
    ))
    with TestClient(create_app(lambda: service)) as client:
        response = client.post("/recommend", json={"query": "shoes", "user_id": 1})

    assert response.status_code == 500
    assert response.json()["error"] == "UnknownIndexVersion"


def test_health_and_ready(client):
    health = client.get("/health")

    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert client.get("/ready").json() == {"status": "ready"}


def test_not_initialized_is_503(make_service):
    service = make_service()
    # no context manager: lifespan never runs
    client = TestClient(create_app(lambda: service))

    assert client.get("/ready").status_code == 503
    assert client.get("/health").status_code == 503
    assert client.post("/rank", json={"user_id": 1, "candidates": [1]}).status_code == 503


def test_info(client):
    body = client.get("/info").json()

    assert body["service_name"] == "recommendation-service"
    assert body["ranking"]["model_version"] == "stub-v1"
    assert body["candidate_generation"]["content_index"] == "content-v1"


def test_lift_endpoint_disables_reranker(client):
    state = client.post("/rerank/lift", json={"lift": -0.01}).json()
    assert state["lift_disabled"] is True

    guardrails = client.get("/rerank/guardrails").json()
    assert guardrails["configured"] is True
    assert guardrails["lift_disabled"] is True

    body = client.post(
        "/recommend", json={"query": "shoes", "user_id": 1, "context": {"surface": "search"}}
    ).json()
    assert body["diagnostics"]["rerank"]["bypass_reason"] == "non_positive_lift"


def test_root(client):
    assert client.get("/").json()["health"] == "/health"
