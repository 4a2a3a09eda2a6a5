# bizcrawler/storage.py
import json
import logging
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from bizcrawler.config import FRESH_HOURS, EntityKind

logger = logging.getLogger(__name__)

ID_LENGTH = 8
ID_FILE_RE = re.compile(r"^\d{8}\.json$")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

PathLike = Union[str, Path]


def now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as f:
        f.write(payload)

    os.replace(tmp, path)


# ===================== ID 与路径 =====================
def pad_id(entity_id) -> str:
    """补零到 8 位；已经是 8 位时原样返回。"""
    text = str(entity_id).strip()
    if not re.fullmatch(r"[0-9]{1,%d}" % ID_LENGTH, text):
        raise ValueError(f"invalid entity id: {entity_id!r}")
    return text.zfill(ID_LENGTH)


def detail_path(base: PathLike, entity_id, kind: EntityKind) -> Path:
    eid = pad_id(entity_id)
    return Path(base) / kind.plural / "details" / eid[0] / f"{eid}.json"


def raw_html_path(base: PathLike, entity_id, kind: EntityKind, suffix: str) -> Path:
    eid = pad_id(entity_id)
    return Path(base) / "raw" / kind.plural / f"{eid}_{suffix}.html"


def ids_file_path(base: PathLike, kind: EntityKind, year: int, month: int) -> Path:
    ym_dir = Path(base) / kind.plural / f"{year:03d}-{month:02d}"
    return ym_dir / f"ids_{kind.plural}_{year}_{month}.txt"


# ===================== 原始 HTML =====================
def save_raw_html(base: PathLike, entity_id, kind: EntityKind, suffix: str, html_text: str) -> Path:
    path = raw_html_path(base, entity_id, kind, suffix)
    atomic_write_bytes(path, (html_text or "").encode("utf-8", errors="replace"))
    logger.debug("[raw] saved %s (%d chars)", path, len(html_text or ""))
    return path


def load_raw_html(base: PathLike, entity_id, kind: EntityKind, suffix: str) -> Optional[str]:
    path = raw_html_path(base, entity_id, kind, suffix)
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


# ===================== 详情 JSON =====================
def clean_for_json(data):
    """去掉会弄坏 JSON 的控制字符，key 和 value 都处理。"""
    if isinstance(data, dict):
        return {clean_for_json(k) if isinstance(k, str) else k: clean_for_json(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [clean_for_json(x) for x in data]
    if isinstance(data, str):
        return CONTROL_CHARS_RE.sub("", data)
    return data


def encode_record(record: dict, entity_id: str = "") -> bytes:
    """
    依次尝试：
    1. 不转义 unicode + 缩进
    2. 转义 unicode + 缩进
    3. 转义 unicode + 紧凑 + default=str
    4. 全部失败时写一个错误说明文档，保证不会落下 0 字节文件
    """
    attempts = [
        {"ensure_ascii": False, "indent": 2},
        {"ensure_ascii": True, "indent": 2},
        {"ensure_ascii": True, "default": str},
    ]
    last_err: Optional[Exception] = None
    for kwargs in attempts:
        try:
            return json.dumps(record, **kwargs).encode("utf-8")
        except (TypeError, ValueError, UnicodeEncodeError) as e:
            last_err = e
            logger.warning("[save] json encoding failed for %s with %s: %s", entity_id, kwargs, e)

    logger.error("[save] all json encoding attempts failed for %s: %s", entity_id, last_err)
    error_doc = {
        "error": "JSON encoding failed",
        "message": str(last_err),
        "id": entity_id,
        "timestamp": now_iso(),
        "field_count": len(record) if isinstance(record, dict) else 0,
    }
    return json.dumps(error_doc, ensure_ascii=True).encode("utf-8")


def load_detail(base: PathLike, entity_id, kind: EntityKind) -> Optional[dict]:
    path = detail_path(base, entity_id, kind)
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning("[load] corrupt json %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def save_detail(base: PathLike, entity_id, kind: EntityKind, record: dict, *,
                merge: bool = False) -> Path:
    eid = pad_id(entity_id)
    path = detail_path(base, eid, kind)

    out = {}
    if merge:
        out.update(load_detail(base, eid, kind) or {})
    out.update(record)
    out.setdefault("id", eid)
    out.setdefault("crawled_at", now_iso())

    payload = encode_record(clean_for_json(out), eid)
    atomic_write_bytes(path, payload)

    logger.info("[save] %s %s -> %s (%d bytes)", kind.value, eid, path, len(payload))
    return path


def _parse_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        return None
    # 没有时区的按本地时间
    return ts.astimezone() if ts.tzinfo is None else ts


def is_fresh(base: PathLike, entity_id, kind: EntityKind, *,
             now: Optional[datetime] = None,
             max_age: timedelta = timedelta(hours=FRESH_HOURS)) -> bool:
    """
    已保存的记录 crawled_at 距今不足 max_age 则视为新鲜。
    crawled_at 缺失时用文件 mtime；JSON 损坏时删掉文件，按不新鲜处理。
    """
    path = detail_path(base, entity_id, kind)
    if not path.exists():
        return False

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning("[fresh] corrupt json %s, deleting: %s", path, e)
        path.unlink(missing_ok=True)
        return False

    crawled_at = _parse_timestamp(data.get("crawled_at")) if isinstance(data, dict) else None
    if crawled_at is None:
        crawled_at = datetime.fromtimestamp(path.stat().st_mtime).astimezone()

    now = now or datetime.now().astimezone()
    if now.tzinfo is None:
        now = now.astimezone()
    return now - crawled_at < max_age


# ===================== ID 来源 =====================
def iter_detail_ids(base: PathLike, kind: EntityKind) -> Iterator[str]:
    details = Path(base) / kind.plural / "details"
    for digit in "0123456789":
        shard = details / digit
        if not shard.is_dir():
            continue
        for p in sorted(shard.iterdir()):
            if ID_FILE_RE.match(p.name):
                yield p.stem


def read_ids_file(path: PathLike) -> List[str]:
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def dedup_list(lst: Iterable) -> list:
    seen = set()
    out = []
    for x in lst:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out
