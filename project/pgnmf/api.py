import logging
import os
from io import BytesIO
from pathlib import Path
from typing import List, Optional

import joblib
import numpy as np
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from PIL import Image
from pydantic import BaseModel

from .config import Config
from .nmf_core import factors, init_factors, nnls_subproblem, reconstruction_error


logger = logging.getLogger(__name__)

app = FastAPI()

# Load artifacts on startup
base_dir = Path(os.environ.get("PGNMF_ARTIFACTS_DIR", Path(__file__).resolve().parent.parent))
try:
    npz = np.load(base_dir / "nmf_artifacts.npz")
    W = npz["W"].astype(np.float64)
    img_shape = tuple(npz["img_shape"].tolist())
    knn = joblib.load(base_dir / "knn.joblib")
    _load_err = None
except Exception as e:
    # Delay raising until /predict is hit to return meaningful error
    W = None
    knn = None
    img_shape = (8, 8)
    _load_err = e
    logger.warning("model artifacts not loaded from %s: %s", base_dir, e)


class ConfigModel(BaseModel):
    tolerance: float
    max_iter: int
    time_limit: float
    max_outer_sub: int
    max_inner_sub: int


class FactorizeRequest(BaseModel):
    V: List[List[float]]
    W0: Optional[List[List[float]]] = None
    H0: Optional[List[List[float]]] = None
    k: Optional[int] = None
    random_state: Optional[int] = None
    config: ConfigModel


def _matrix(name, rows):
    try:
        arr = np.asarray(rows, dtype=np.float64)
    except ValueError:
        arr = None  # ragged rows
    if arr is None or arr.ndim != 2 or arr.size == 0:
        raise HTTPException(status_code=400, detail=f"{name} must be a non-empty rectangular matrix.")
    return arr


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/")
def root():
    return {
        "ok": True,
        "name": "Projected gradient NMF",
        "message": "Use /health, /docs, /factorize or /predict",
        "img_shape": list(img_shape),
    }


@app.post("/factorize")
def factorize(req: FactorizeRequest):
    """Factorise V into non-negative W, H and report the reconstruction error."""
    V = _matrix("V", req.V)

    try:
        config = Config(**req.config.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if req.W0 is not None and req.H0 is not None:
        Wo, Ho = _matrix("W0", req.W0), _matrix("H0", req.H0)
    elif req.k is not None and req.k > 0:
        Wo, Ho = init_factors(V, req.k, random_state=req.random_state)
    else:
        raise HTTPException(status_code=400, detail="Provide both W0 and H0, or a positive k.")

    try:
        W_fit, H_fit, ok = factors(V, Wo, Ho, config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "W": W_fit.tolist(),
        "H": H_fit.tolist(),
        "ok": bool(ok),
        "delta": reconstruction_error(V, W_fit, H_fit),
    }


@app.post("/predict")
async def predict(image: UploadFile = File(...)):
    if W is None or knn is None:
        raise HTTPException(status_code=500, detail=f"Model artifacts not found. Train the model first. Error: {_load_err}")

    try:
        content = await image.read()
        img = Image.open(BytesIO(content)).convert("L")  # grayscale
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid image file.")

    # Resize to the training image shape and normalize to [0,1]
    img = img.resize(img_shape, Image.BILINEAR)
    arr = np.asarray(img, dtype=np.float64)
    if arr.ndim != 2:
        raise HTTPException(status_code=400, detail="Image processing error.")
    v = (arr / 255.0).reshape(-1, 1)

    # Project onto W to get the activation column h
    h, _, _, _ = nnls_subproblem(v, W, np.zeros((W.shape[1], 1)), tol=1e-6, max_outer=300, max_inner=20)
    pred = int(knn.predict(h.T)[0])
    seen = v.reshape(img_shape).tolist()

    return JSONResponse({"pred": pred, "seen": seen})
