from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
import json
from datetime import datetime
from typing import Optional
from fastapi import HTTPException
from fastapi.responses import FileResponse

from bizcrawler.config import DATA_DIR, EntityKind
from bizcrawler.storage import detail_path, iter_detail_ids, pad_id, raw_html_path

# 测试里可以直接替换
BASE_DIR = Path(DATA_DIR)

app = FastAPI(title="Taiwan Business Registry Viewer")

# CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 本地先放开；上线再收紧
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def read_json(path: Path) -> dict:
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


# file 最后修改时间
def file_mtime_iso(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    ts = path.stat().st_mtime
    return datetime.fromtimestamp(ts).isoformat(timespec="seconds")


def get_kind(kind: str) -> EntityKind:
    try:
        return EntityKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"unknown kind: {kind}")


def check_id(entity_id: str) -> str:
    try:
        return pad_id(entity_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="invalid id")


@app.get("/api/overview")
def overview():
    out = {}
    for kind in EntityKind:
        ids = list(iter_detail_ids(BASE_DIR, kind))
        raw_dir = BASE_DIR / "raw" / kind.plural
        raw_count = len(list(raw_dir.glob("*.html"))) if raw_dir.is_dir() else 0

        latest = None
        for eid in ids:
            mtime = file_mtime_iso(detail_path(BASE_DIR, eid, kind))
            if mtime and (latest is None or mtime > latest):
                latest = mtime

        out[kind.plural] = {
            "records": len(ids),
            "raw_snapshots": raw_count,
            "latest_record_at": latest,
        }
    return out


@app.get("/api/{kind}/records")
def list_records(
    kind: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    k = get_kind(kind)
    ids = sorted(iter_detail_ids(BASE_DIR, k))
    return {
        "total": len(ids),
        "offset": offset,
        "limit": limit,
        "items": ids[offset:offset + limit],
    }


@app.get("/api/{kind}/records/{entity_id}")
def get_record(kind: str, entity_id: str):
    k = get_kind(kind)
    eid = check_id(entity_id)
    path = detail_path(BASE_DIR, eid, k)
    if not path.exists():
        raise HTTPException(status_code=404, detail="record not found")
    try:
        return read_json(path)
    except ValueError:
        raise HTTPException(status_code=500, detail="record is not valid JSON")


@app.get("/api/{kind}/raw/{entity_id}/{suffix}")
def get_raw_html(kind: str, entity_id: str, suffix: str):
    k = get_kind(kind)
    eid = check_id(entity_id)
    if not suffix.replace("_", "").isalnum():
        raise HTTPException(status_code=404, detail="invalid snapshot name")
    path = raw_html_path(BASE_DIR, eid, k, suffix)
    if not path.exists():
        raise HTTPException(status_code=404, detail="snapshot not found")
    return FileResponse(path, media_type="text/html")
