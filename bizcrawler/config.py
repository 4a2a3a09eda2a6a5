# bizcrawler/config.py
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

# ===================== 站点配置 =====================
BASE_SITE = "https://findbiz.nat.gov.tw"
QUERY_INIT_URL = "https://findbiz.nat.gov.tw/fts/query/QueryBar/queryInit.do"
QUERY_LIST_URL = "https://findbiz.nat.gov.tw/fts/query/QueryList/queryList.do"

COMPANY_DETAIL_PATH = "/fts/query/QueryCmpyDetail/queryCmpyDetail.do"
BUSINESS_DETAIL_PATH = "/fts/query/QueryBusmDetail/queryBusmDetail.do"

# 站点提示语（插页）
RATE_LIMIT_MARKER = "本系統限制使用者間隔2秒鐘才能進行下一次查詢"
NOT_FOUND_MARKER = "很抱歉，我們無法找到符合條件的查詢結果。"


class EntityKind(str, Enum):
    COMPANY = "company"
    BUSINESS = "business"

    @property
    def plural(self) -> str:
        return "companies" if self is EntityKind.COMPANY else "businesses"

    @property
    def detail_path(self) -> str:
        return COMPANY_DETAIL_PATH if self is EntityKind.COMPANY else BUSINESS_DETAIL_PATH

    @property
    def content_id(self) -> str:
        return "tabCmpyContent" if self is EntityKind.COMPANY else "tabBusmContent"


def search_form(entity_id: str, kind: EntityKind) -> Dict[str, str]:
    # 字段名与顺序照抄站点表单
    form = {
        "errorMsg": "",
        "validatorOpen": "N",
        "rlPermit": "0",
        "userResp": "",
        "curPage": "0",
        "fhl": "zh_TW",
        "qryCond": entity_id,
        "infoType": "D",
        "qryType": "cmpyType" if kind is EntityKind.COMPANY else "busmType",
        "cmpyType": "true" if kind is EntityKind.COMPANY else "",
        "brCmpyType": "",
        "busmType": "true" if kind is EntityKind.BUSINESS else "",
        "factType": "",
        "lmtdType": "",
        "isAlive": "all",
        "busiItemMain": "",
        "busiItemSub": "",
    }
    return form


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/142.0.0.0 Safari/537.36"
)

# ===================== 路径配置 =====================
# BIZCRAWLER_DATA_DIR 未设置时写到 <cwd>/data/gcis
DATA_DIR = Path(os.environ.get("BIZCRAWLER_DATA_DIR") or Path.cwd() / "data" / "gcis")

# ===================== 运行开关 =====================
# 站点要求两次查询间隔 >= 2s（搜索/详情都算）
RATE_LIMIT_SECONDS = 2.0
SEARCH_DELAY = 2.0
RATE_LIMIT_COOLDOWN = 2.0

# 每个 ID 的重试次数（不含第一次），失败后线性延迟 retry_delay + retry
MAX_RETRIES = 1
RETRY_DELAY = 3.0

SESSION_INIT_DELAY = 1.0
FAST_SESSION_INIT_DELAY = 0.2

# 小于这个长度的详情页基本是错误页
MIN_DETAIL_LENGTH = 1000
# 解析出少于这个数量的字段视为解析失败
MIN_FIELDS = 3

FRESH_HOURS = 24

# requests timeout
TIMEOUT = (20, 60)       # (connect, read)


@dataclass
class CrawlerConfig:
    rate_limit: float = RATE_LIMIT_SECONDS
    rate_jitter: Tuple[float, float] = (0.0, 0.0)
    search_delay: float = SEARCH_DELAY
    rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN
    rate_limit_max_waits: Optional[int] = None
    retry_delay: float = RETRY_DELAY
    max_retries: int = MAX_RETRIES
    session_init_delay: float = SESSION_INIT_DELAY
    fast_mode: bool = False
    proxy: Optional[str] = None
    timeout: Tuple[float, float] = TIMEOUT
    data_dir: Path = field(default_factory=lambda: DATA_DIR)
    min_detail_length: int = MIN_DETAIL_LENGTH
    min_fields: int = MIN_FIELDS
    fresh_hours: float = FRESH_HOURS
    merge_existing: bool = False

    @classmethod
    def default(cls, **overrides) -> "CrawlerConfig":
        return cls(**overrides)

    @classmethod
    def safe(cls, **overrides) -> "CrawlerConfig":
        """
        慢速但稳定：更长的搜索等待、更多重试。
        """
        base = cls(
            retry_delay=10.0,
            max_retries=3,
            session_init_delay=2.0,
            search_delay=5.0,
        )
        return replace(base, **overrides)

    @classmethod
    def fast(cls, **overrides) -> "CrawlerConfig":
        """
        快速模式：关闭全局限速器，握手只等 0.2s。
        搜索后等待与限流冷却仍然保留（站点强制）。
        """
        base = cls(
            fast_mode=True,
            session_init_delay=FAST_SESSION_INIT_DELAY,
        )
        return replace(base, **overrides)

    @property
    def effective_session_init_delay(self) -> float:
        if self.fast_mode:
            return min(self.session_init_delay, FAST_SESSION_INIT_DELAY)
        return self.session_init_delay
