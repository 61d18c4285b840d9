from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stocktake_matcher.config import MatchConfig
from stocktake_matcher.db import InventoryDB
from stocktake_matcher.errors import MatchError, ProviderUnconfigured
from stocktake_matcher.features import has_valid_feature
from stocktake_matcher.models import Query
from stocktake_matcher.service import MatchService


class AiSearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    photo_url: str | None = Field(default=None, alias="photoUrl")
    department: str | None = None


app = FastAPI(title="Stocktake Product Matcher", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@lru_cache(maxsize=1)
def get_service() -> MatchService:
    cfg = MatchConfig.from_env()
    db_path = cfg.db_path if cfg.db_path.is_absolute() else ROOT_DIR / cfg.db_path
    return MatchService(InventoryDB(db_path), cfg=cfg)


@app.get("/api/health")
def health(service: MatchService = Depends(get_service)) -> dict:
    return {
        "status": "ok",
        "app": "stocktake-matcher",
        "stats": service.stats(),
    }


@app.get("/api/products")
def list_products(
    keyword: str = "",
    supplier: str = "",
    department: str | None = None,
    service: MatchService = Depends(get_service),
) -> dict:
    products = service.search(keyword, supplier, department)
    return {
        "products": [
            {
                "id": p.id,
                "name": p.name,
                "productCode": p.product_code,
                "supplierName": p.supplier_name,
                "departments": list(p.departments),
                "unit": p.unit,
                "imageUrl": p.primary_image_url,
                "hasFeature": has_valid_feature(p),
            }
            for p in products
        ]
    }


@app.post("/api/ai-search")
def ai_search(request: AiSearchRequest, service: MatchService = Depends(get_service)) -> dict:
    query = Query.create(request.query, request.photo_url, request.department)
    try:
        result = service.match(query)
    except ProviderUnconfigured as exc:
        raise HTTPException(status_code=500, detail=f"AI search is not configured: {exc}") from exc
    except MatchError as exc:
        if not exc.retryable:
            raise
        raise HTTPException(status_code=503, detail=f"{exc} Please retry.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_public()


@app.post("/api/products/ingest-features")
def ingest_product_features(service: MatchService = Depends(get_service)) -> dict:
    try:
        updated = service.ingest_product_features()
    except ProviderUnconfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"ok": True, "updated": updated}


@app.post("/api/photo-records/ingest-features")
def ingest_photo_features(service: MatchService = Depends(get_service)) -> dict:
    try:
        updated = service.ingest_stock_photo_features()
    except ProviderUnconfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"ok": True, "updated": updated}
