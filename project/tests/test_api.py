from io import BytesIO

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sklearn.neighbors import KNeighborsClassifier

from pgnmf import api


CONFIG = {"tolerance": 1e-5, "max_iter": 100, "time_limit": 5.0, "max_outer_sub": 1000, "max_inner_sub": 20}
V = [[20.0, 0, 30, 0], [0, 16, 1, 9], [0, 10, 6, 11]]


@pytest.fixture()
def client() -> TestClient:
    return TestClient(api.app)


def test_health_and_root(client: TestClient) -> None:
    assert client.get("/health").json() == {"ok": True}
    body = client.get("/").json()
    assert body["ok"] is True
    assert len(body["img_shape"]) == 2


def test_factorize_with_random_init(client: TestClient) -> None:
    resp = client.post("/factorize", json={"V": V, "k": 5, "random_state": 1, "config": CONFIG})

    assert resp.status_code == 200
    body = resp.json()
    W = np.array(body["W"])
    H = np.array(body["H"])
    assert W.shape == (3, 5)
    assert H.shape == (5, 4)
    assert (W >= 0).all() and (H >= 0).all()
    assert isinstance(body["ok"], bool)
    assert body["delta"] < 1e-2


def test_factorize_zero_budget_echoes_initial_factors(client: TestClient) -> None:
    W0 = [[1.0, 0.5], [0.2, 1.0], [0.3, 0.3]]
    H0 = [[1.0, 1.0, 1.0, 1.0], [0.5, 0.5, 0.5, 0.5]]
    config = dict(CONFIG, max_iter=0)

    body = client.post("/factorize", json={"V": V, "W0": W0, "H0": H0, "config": config}).json()

    assert body["W"] == W0
    assert body["H"] == H0
    assert body["ok"] is False


@pytest.mark.parametrize(
    "payload",
    [
        {"V": V, "config": CONFIG},
        {"V": V, "k": 0, "config": CONFIG},
        {"V": [[1.0, 2.0], [3.0]], "k": 2, "config": CONFIG},
        {"V": [], "k": 2, "config": CONFIG},
        {"V": V, "W0": [[1.0, 1.0]], "H0": [[1.0] * 4, [1.0] * 4], "config": CONFIG},
        {"V": V, "k": 2, "config": dict(CONFIG, max_iter=-1)},
    ],
)
def test_factorize_rejects_bad_requests(client: TestClient, payload) -> None:
    resp = client.post("/factorize", json=payload)
    assert resp.status_code == 400


def _png(pixels: np.ndarray) -> bytes:
    buf = BytesIO()
    Image.fromarray(pixels.astype(np.uint8)).save(buf, format="PNG")
    return buf.getvalue()


def test_predict_without_artifacts(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(api, "W", None)
    monkeypatch.setattr(api, "knn", None)
    monkeypatch.setattr(api, "_load_err", FileNotFoundError("nmf_artifacts.npz"))

    resp = client.post("/predict", files={"image": ("digit.png", _png(np.zeros((8, 8))), "image/png")})
    assert resp.status_code == 500
    assert "nmf_artifacts.npz" in resp.json()["detail"]


def test_predict_with_artifacts(client: TestClient, monkeypatch) -> None:
    rng = np.random.default_rng(0)
    W = rng.random((64, 4))
    knn = KNeighborsClassifier(n_neighbors=1).fit(rng.random((10, 4)), np.arange(10))
    monkeypatch.setattr(api, "W", W)
    monkeypatch.setattr(api, "knn", knn)
    monkeypatch.setattr(api, "img_shape", (8, 8))

    pixels = rng.integers(0, 256, size=(8, 8))
    resp = client.post("/predict", files={"image": ("digit.png", _png(pixels), "image/png")})

    assert resp.status_code == 200
    body = resp.json()
    assert body["pred"] in range(10)
    assert np.array(body["seen"]).shape == (8, 8)


def test_predict_rejects_invalid_image(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(api, "W", np.ones((64, 2)))
    monkeypatch.setattr(api, "knn", object())

    resp = client.post("/predict", files={"image": ("digit.png", b"not an image", "image/png")})
    assert resp.status_code == 400
