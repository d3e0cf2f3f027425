"""Tests for the cloud drive HTTP API."""

from __future__ import annotations

import textwrap

import pytest

pytest.importorskip("httpx", reason="httpx is required for TestClient")

from fastapi.testclient import TestClient

from clouddisk.auth import create_basic_auth_header, hash_password, verify_password
from clouddisk.main import create_app

SECRET = "s3cret"
HEADERS = {"X-Cloud-Secret": SECRET}
MIB = 1024 * 1024


def write_config(tmp_path, root, password=SECRET, pass_bcrypt=False):
    config = textwrap.dedent(
        f"""
        server:
          addr: "127.0.0.1"
          port: 18080
        storage:
          root: "{root.as_posix()}"
          maxUploadSize: 1048576
          maxNameAttempts: 100
        auth:
          password: "{password}"
          pass_bcrypt: {"true" if pass_bcrypt else "false"}
        search:
          maxResults: 1000
        status:
          enabled: false
        logging:
          json: false
          file: ""
          level: "INFO"
        hotReload:
          enabled: false
          watchConfig: false
        """
    )

    config_path = tmp_path / "clouddisk.yaml"
    config_path.write_text(config, encoding="utf-8")
    return config_path


@pytest.fixture()
def storage_root(tmp_path):
    root = tmp_path / "cloud"
    root.mkdir()
    (root / "docs").mkdir()
    (root / "docs" / "report.pdf").write_bytes(b"%PDF original")
    (root / "a.jpg").write_bytes(b"\xff\xd8\xff")
    (root / "b.txt").write_text("hello world", encoding="utf-8")
    (root / "sub").mkdir()
    (root / "sub" / "c.png").write_bytes(b"\x89PNG")
    return root


@pytest.fixture()
def client(tmp_path, storage_root):
    """Create a FastAPI test client with a temporary configuration."""

    app = create_app(str(write_config(tmp_path, storage_root)))
    with TestClient(app) as client:
        yield client


def error_kind(response):
    return response.json()["detail"]["data"]["kind"]


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_cloud_routes_require_secret(client):
    assert client.get("/api/cloud/list").status_code == 401
    assert client.get("/api/cloud/list", headers={"X-Cloud-Secret": "wrong"}).status_code == 401
    assert client.get("/api/cloud/download", params={"path": "b.txt"}).status_code == 401

    payload = client.get("/api/cloud/list").json()
    assert payload["detail"]["code"] == 401


def test_secret_sources(client):
    assert client.get("/api/cloud/list", headers=HEADERS).status_code == 200

    basic = {"Authorization": create_basic_auth_header("anyone", SECRET)}
    assert client.get("/api/cloud/list", headers=basic).status_code == 200

    assert client.get("/api/cloud/list", params={"password": SECRET}).status_code == 200

    # JSON body field, as sent by the web client
    response = client.post("/api/cloud/list", json={"path": "", "password": SECRET})
    assert response.status_code == 200


def test_verify_endpoint(client):
    assert client.post("/api/auth/verify", json={"password": SECRET}).json()["data"]["valid"] is True
    assert client.post("/api/auth/verify", json={"password": "nope"}).json()["data"]["valid"] is False
    assert client.post("/api/auth/verify", json={}).json()["data"]["valid"] is False


def test_status_endpoint(client):
    response = client.get("/api/status")
    assert response.status_code == 200
    data = response.json()["data"]
    assert set(data) >= {"cpu", "memory", "last_updated", "client_ip"}


def test_list(client):
    response = client.get("/api/cloud/list", params={"path": ""}, headers=HEADERS)
    assert response.status_code == 200

    data = response.json()["data"]
    assert data["path"] == ""
    assert data["parent_path"] is None
    assert [f["name"] for f in data["files"]] == ["docs", "sub", "a.jpg", "b.txt"]

    data = client.get("/api/cloud/list", params={"path": "docs"}, headers=HEADERS).json()["data"]
    assert data["parent_path"] == ""
    assert data["files"][0]["path"] == "docs/report.pdf"
    assert data["files"][0]["category"] == "document"


def test_list_errors(client):
    response = client.get("/api/cloud/list", params={"path": "../"}, headers=HEADERS)
    assert response.status_code == 400
    assert error_kind(response) == "InvalidPath"

    response = client.get("/api/cloud/list", params={"path": "nope"}, headers=HEADERS)
    assert response.status_code == 404
    assert error_kind(response) == "NotFound"

    response = client.get("/api/cloud/list", params={"path": "b.txt"}, headers=HEADERS)
    assert response.status_code == 400
    assert error_kind(response) == "NotADirectory"


def test_search_by_category(client):
    response = client.get(
        "/api/cloud/search",
        params={"path": "", "query": "", "types": "image"},
        headers=HEADERS,
    )
    assert response.status_code == 200

    data = response.json()["data"]
    assert sorted(f["path"] for f in data["files"]) == ["a.jpg", "sub/c.png"]
    assert data["errors"] == []
    assert data["truncated"] is False

    # Same search through the JSON body
    response = client.post(
        "/api/cloud/search",
        json={"path": "", "query": "", "types": ["image"]},
        headers=HEADERS,
    )
    assert sorted(f["path"] for f in response.json()["data"]["files"]) == ["a.jpg", "sub/c.png"]


def test_search_truncation(tmp_path, storage_root):
    config_path = write_config(tmp_path, storage_root)
    config_path.write_text(
        config_path.read_text(encoding="utf-8").replace("maxResults: 1000", "maxResults: 2"),
        encoding="utf-8",
    )
    with TestClient(create_app(str(config_path))) as client:
        data = client.get("/api/cloud/search", params={"query": ""}, headers=HEADERS).json()["data"]

    assert len(data["files"]) == 2
    assert data["truncated"] is True


def test_upload_collisions(client, storage_root):
    first = client.post(
        "/api/cloud/upload",
        data={"path": "docs"},
        files={"file": ("report.pdf", b"one", "application/pdf")},
        headers=HEADERS,
    )
    second = client.post(
        "/api/cloud/upload",
        data={"path": "docs"},
        files={"file": ("report.pdf", b"two", "application/pdf")},
        headers=HEADERS,
    )

    assert first.status_code == 200
    assert first.json()["data"] == {"stored_name": "report (1).pdf", "stored_path": "docs/report (1).pdf", "size": 3}
    assert second.json()["data"]["stored_name"] == "report (2).pdf"
    assert (storage_root / "docs" / "report.pdf").read_bytes() == b"%PDF original"


def test_upload_with_form_password(client, storage_root):
    response = client.post(
        "/api/cloud/upload",
        data={"path": "", "password": SECRET},
        files={"file": ("new.txt", b"x", "text/plain")},
    )
    assert response.status_code == 200
    assert (storage_root / "new.txt").exists()


def test_upload_too_large(client, storage_root):
    response = client.post(
        "/api/cloud/upload",
        data={"path": ""},
        files={"file": ("big.bin", b"x" * (MIB + 1), "application/octet-stream")},
        headers=HEADERS,
    )
    assert response.status_code == 413
    assert error_kind(response) == "PayloadTooLarge"
    assert not (storage_root / "big.bin").exists()


def test_mkdir(client, storage_root):
    response = client.post("/api/cloud/mkdir", json={"path": "", "name": "docs"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"] == {"name": "docs (1)", "path": "docs (1)"}
    assert (storage_root / "docs (1)").is_dir()


def test_rename_with_separator_is_rejected(client, storage_root):
    before = sorted(p.name for p in storage_root.iterdir())

    response = client.post(
        "/api/cloud/rename",
        json={"path": "b.txt", "new_name": "sub/evil.txt"},
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert error_kind(response) == "InvalidPath"

    assert sorted(p.name for p in storage_root.iterdir()) == before
    assert not (storage_root / "sub" / "evil.txt").exists()


def test_rename(client, storage_root):
    response = client.post(
        "/api/cloud/rename",
        json={"path": "b.txt", "new_name": "a.jpg"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"new_name": "a (1).jpg", "new_path": "a (1).jpg"}


def test_move_and_delete(client, storage_root):
    response = client.post(
        "/api/cloud/move",
        json={"items": ["a.jpg", "missing.txt"], "target_path": "sub"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["moved"] == 1
    assert data["results"][0] == {"item": "a.jpg", "success": True, "dest": "sub/a.jpg"}
    assert data["results"][1]["success"] is False
    assert data["results"][1]["kind"] == "NotFound"

    response = client.post(
        "/api/cloud/delete",
        json={"paths": ["sub", "", "../etc"]},
        headers=HEADERS,
    )
    data = response.json()["data"]
    assert data["deleted"] == ["sub"]
    assert [f["kind"] for f in data["failed"]] == ["InvalidPath", "InvalidPath"]
    assert not (storage_root / "sub").exists()
    assert storage_root.exists()


def test_download_full_and_ranges(client):
    response = client.get("/api/cloud/download", params={"path": "b.txt"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.content == b"hello world"
    assert response.headers["accept-ranges"] == "bytes"
    assert "attachment" in response.headers["content-disposition"]

    size = len(b"hello world")
    response = client.get(
        "/api/cloud/download",
        params={"path": "b.txt"},
        headers={**HEADERS, "Range": "bytes=0-"},
    )
    assert response.status_code == 206
    assert response.headers["content-range"] == f"bytes 0-{size - 1}/{size}"
    assert response.content == b"hello world"

    response = client.get(
        "/api/cloud/download",
        params={"path": "b.txt"},
        headers={**HEADERS, "Range": f"bytes={size}-{size}"},
    )
    assert response.status_code == 416
    assert response.headers["content-range"] == f"bytes */{size}"
    assert response.content == b""


def test_download_with_json_body(client, storage_root):
    response = client.post("/api/cloud/download", json={"path": "docs/report.pdf", "password": SECRET})
    assert response.status_code == 200
    assert response.content == b"%PDF original"
    assert response.headers["content-disposition"].startswith('attachment; filename="report.pdf"')

    (storage_root / "报告.pdf").write_bytes(b"pdf")
    response = client.post("/api/cloud/download", json={"path": "报告.pdf"}, headers=HEADERS)
    assert response.status_code == 200
    disposition = response.headers["content-disposition"]
    assert 'filename="__.pdf"' in disposition
    assert "filename*=UTF-8''%E6%8A%A5%E5%91%8A.pdf" in disposition

    assert client.post("/api/cloud/download", json={"path": "b.txt"}).status_code == 401
    response = client.post("/api/cloud/download", json={"path": "../x", "password": SECRET})
    assert response.status_code == 400
    assert error_kind(response) == "InvalidPath"


def test_download_by_path_segment(client):
    response = client.get("/api/cloud/download/sub/c.png", params={"inline": "1"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert "content-disposition" not in response.headers


def test_download_errors(client):
    response = client.get("/api/cloud/download", params={"path": "docs"}, headers=HEADERS)
    assert response.status_code == 400
    assert error_kind(response) == "NotAFile"

    response = client.get("/api/cloud/download", params={"path": "nope.bin"}, headers=HEADERS)
    assert response.status_code == 404

    response = client.get("/api/cloud/download", params={"path": "../../etc/passwd"}, headers=HEADERS)
    assert response.status_code == 400
    assert error_kind(response) == "InvalidPath"


def test_inline_video_head_chunk(client, storage_root):
    with open(storage_root / "movie.mp4", "wb") as f:
        f.truncate(50 * MIB)

    response = client.get(
        "/api/cloud/download",
        params={"path": "movie.mp4", "inline": "true", "password": SECRET},
    )
    assert response.status_code == 206
    assert response.headers["content-range"] == f"bytes 0-{10 * MIB - 1}/{50 * MIB}"
    assert len(response.content) == 10 * MIB


def test_preview_redirects_to_inline_download(client):
    response = client.get(
        "/api/cloud/preview",
        params={"path": "a.jpg", "password": SECRET},
        follow_redirects=False,
    )
    assert response.status_code == 307
    location = response.headers["location"]
    assert "/api/cloud/download" in location
    assert "inline=1" in location
    assert "path=a.jpg" in location


def test_injected_async_predicate(tmp_path, storage_root):
    async def verify(secret):
        return secret == "from-vault"

    app = create_app(str(write_config(tmp_path, storage_root)), verify_secret=verify)
    with TestClient(app) as client:
        assert client.get("/api/cloud/list", headers={"X-Cloud-Secret": "from-vault"}).status_code == 200
        assert client.get("/api/cloud/list", headers=HEADERS).status_code == 401


class AsyncVault:
    """Credential predicate whose ``__call__`` is a coroutine"""

    async def __call__(self, secret):
        return secret == "from-vault"


def test_injected_async_callable_object(tmp_path, storage_root):
    app = create_app(str(write_config(tmp_path, storage_root)), verify_secret=AsyncVault())
    with TestClient(app) as client:
        assert client.get("/api/cloud/list", headers={"X-Cloud-Secret": "WRONG"}).status_code == 401
        assert client.get("/api/cloud/list", headers={"X-Cloud-Secret": "from-vault"}).status_code == 200


def test_predicate_must_return_true(tmp_path, storage_root):
    app = create_app(str(write_config(tmp_path, storage_root)), verify_secret=lambda secret: "yes")
    with TestClient(app) as client:
        assert client.get("/api/cloud/list", headers=HEADERS).status_code == 401


def test_empty_password_rejects_everything(tmp_path, storage_root):
    app = create_app(str(write_config(tmp_path, storage_root, password="")))
    with TestClient(app) as client:
        assert client.get("/api/cloud/list", headers={"X-Cloud-Secret": ""}).status_code == 401
        assert client.get("/api/cloud/list", headers=HEADERS).status_code == 401


def test_bcrypt_password(tmp_path, storage_root):
    hashed = hash_password(SECRET)
    assert verify_password(SECRET, hashed)
    assert not verify_password("other", hashed)

    app = create_app(str(write_config(tmp_path, storage_root, password=hashed, pass_bcrypt=True)))
    with TestClient(app) as client:
        assert client.get("/api/cloud/list", headers=HEADERS).status_code == 200
