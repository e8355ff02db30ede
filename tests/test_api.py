"""
HTTP API tests with the service context replaced by in-memory fakes.
"""
import dataclasses
import json

import pytest
from fastapi.testclient import TestClient

from manualqa.context import get_context
from manualqa.errors import GenerationError
from manualqa.main import create_app
from manualqa.services.rag_service import SOURCES_SENTINEL
from manualqa.storage import encode_storage_name, make_storage_ref
from tests.conftest import MANUAL_TEXT

ALICE = {"X-User-Id": "alice"}


@pytest.fixture
def client(ctx):
    app = create_app()
    app.dependency_overrides[get_context] = lambda: ctx
    return TestClient(app)


def upload(client, *files, headers=ALICE):
    return client.post(
        "/api/documents/upload",
        files=[("files", f) for f in files],
        headers=headers,
    )


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


def test_models(client):
    body = client.get("/api/models").json()
    assert "openai" in body["providers"]
    assert body["default"] == "openai:gpt-4o-mini"


def test_upload_ingests_supported_and_skips_the_rest(client, store):
    response = upload(
        client,
        ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain"),
        ("scan.png", b"\x89PNG", "image/png"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert len(body["inserted"]) == 1
    inserted = body["inserted"][0]
    assert inserted["originalName"] == "guide.txt"
    assert inserted["storageRef"].startswith("alice/")
    assert inserted["chunksCount"] >= 1
    assert [s["originalName"] for s in body["skipped"]] == ["scan.png"]
    assert store.get_document(inserted["documentId"]).status == "ready"


def test_upload_limits(client, ctx):
    files = [(f"f{i}.txt", b"text", "text/plain") for i in range(ctx.settings.max_files_per_upload + 1)]
    assert upload(client, *files).status_code == 400


def test_oversized_file_rejects_the_whole_upload(ctx, store, storage):
    small_limit = dataclasses.replace(ctx, settings=dataclasses.replace(ctx.settings, max_file_size_bytes=100))
    app = create_app()
    app.dependency_overrides[get_context] = lambda: small_limit
    client = TestClient(app)

    response = upload(
        client,
        ("a.txt", b"sixteen bytes ok", "text/plain"),
        ("b.txt", b"x" * 500, "text/plain"),
    )
    assert response.status_code == 400
    assert "b.txt" in response.json()["detail"]
    assert not storage.exists(make_storage_ref("alice", encode_storage_name("a.txt")))
    assert store.list_documents("alice") == []


def test_list_documents_is_per_owner(client):
    upload(client, ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain"))

    mine = client.get("/api/documents", headers=ALICE).json()
    assert [d["originalName"] for d in mine] == ["guide.txt"]
    assert mine[0]["chunksCount"] >= 1
    assert mine[0]["status"] == "ready"

    assert client.get("/api/documents", headers={"X-User-Id": "bob"}).json() == []


def test_process_existing_upload(client):
    inserted = upload(client, ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain")).json()["inserted"][0]
    response = client.post(
        "/api/documents/process",
        json={
            "storageRef": inserted["storageRef"],
            "originalName": "guide.txt",
            "documentId": inserted["documentId"],
        },
        headers=ALICE,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["documentId"] == inserted["documentId"]
    assert body["chunksCount"] == inserted["chunksCount"]


def test_process_errors(client, storage):
    # someone else's storage reference
    response = client.post(
        "/api/documents/process",
        json={"storageRef": "bob/x.txt", "originalName": "x.txt"},
        headers=ALICE,
    )
    assert response.status_code == 404

    response = client.post(
        "/api/documents/process",
        json={"storageRef": "alice/missing.txt", "originalName": "missing.txt"},
        headers=ALICE,
    )
    assert response.status_code == 404

    storage.save("alice/c2Nhbg.png", b"\x89PNG")
    response = client.post(
        "/api/documents/process",
        json={"storageRef": "alice/c2Nhbg.png", "originalName": "scan.png"},
        headers=ALICE,
    )
    assert response.status_code == 415

    assert client.post("/api/documents/process", json={"originalName": "x"}, headers=ALICE).status_code == 422


def test_delete_document(client, storage):
    inserted = upload(client, ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain")).json()["inserted"][0]

    assert client.delete(f"/api/documents/{inserted['documentId']}", headers={"X-User-Id": "bob"}).status_code == 404

    response = client.delete(f"/api/documents/{inserted['documentId']}", headers=ALICE)
    assert response.json() == {"ok": True, "deleted": inserted["documentId"], "storageRemoved": True}
    assert not storage.exists(inserted["storageRef"])

    assert client.delete(f"/api/documents/{inserted['documentId']}", headers=ALICE).status_code == 404


def test_ask_stream_returns_answer_and_sources(client):
    upload(client, ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain"))

    response = client.post(
        "/api/ask_stream",
        json={"question": "How do I reset a password?", "verbosityHint": "concise"},
        headers=ALICE,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    answer, trailer = response.text.split(SOURCES_SENTINEL)
    assert answer == "The answer is here."
    sources = json.loads(trailer)
    assert sources and all(s["fileName"] == "guide.txt" for s in sources)


def test_ask_stream_validation(client):
    assert client.post("/api/ask_stream", json={"question": ""}, headers=ALICE).status_code == 422
    assert client.post("/api/ask_stream", json={"question": "   "}, headers=ALICE).status_code == 400
    response = client.post(
        "/api/ask_stream", json={"question": "hi", "verbosityHint": "verbose"}, headers=ALICE
    )
    assert response.status_code == 422


def test_generate_memo(client, llm):
    upload(client, ("guide.txt", MANUAL_TEXT.encode("utf-8"), "text/plain"))
    response = client.post(
        "/api/memos/generate",
        json={"instruction": "Summarize weekly maintenance", "sourceNames": ["guide.txt"]},
        headers=ALICE,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["memo"] == llm.completion
    assert body["sources"] and body["sources"][0]["fileName"] == "guide.txt"


def test_generate_memo_without_output(client, llm):
    llm.completion = GenerationError("provider returned nothing")
    response = client.post(
        "/api/memos/generate",
        json={"instruction": "Summarize", "sourceNames": []},
        headers=ALICE,
    )
    assert response.status_code == 502
