# bizcrawler/detail.py
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import requests

from bizcrawler.config import QUERY_LIST_URL, CrawlerConfig, EntityKind, search_form
from bizcrawler.net import FindbizSession, RateLimiter
from bizcrawler.parse import SearchPage, classify_search_page, find_detail_link, parse_detail
from bizcrawler.storage import (
    is_fresh, load_detail, load_raw_html, now_iso, pad_id, save_detail, save_raw_html,
)

logger = logging.getLogger(__name__)

DETAIL_PAGE_SUFFIX = "detail_page"
SEARCH_RESULTS_SUFFIX = "search_results"
SEARCH_NOT_FOUND_SUFFIX = "search_not_found"


class FetchStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    PARSE_FAILED = "parse_failed"
    NETWORK_ERROR = "network_error"
    FAILED = "failed"


RETRYABLE = {FetchStatus.PARSE_FAILED, FetchStatus.NETWORK_ERROR}


@dataclass
class FetchResult:
    status: FetchStatus
    record: Optional[dict] = None
    reason: str = ""
    salvaged: bool = False

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.SUCCESS


@dataclass
class CrawlReport:
    processed: int = 0
    successful: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0
    succeeded: List[str] = field(default_factory=list)
    statuses: Dict[str, str] = field(default_factory=dict)


class DetailCrawler:
    """
    单会话、串行的详情抓取器。

    每个 ID 的流程：
    1. 有 _detail_page.html 且能解析出足够字段：直接用，不发请求
    2. 24 小时内抓过：跳过
    3. 搜索 -> 取详情链接 -> 抓详情 -> 解析，失败按 retry_delay + retry 线性等待重试，
       偶数次失败后重建会话
    站点的限流提示页不计入重试次数，只冷却后重来。
    """

    def __init__(self, config: Optional[CrawlerConfig] = None, *,
                 rate: Optional[RateLimiter] = None,
                 session: Optional[FindbizSession] = None):
        self.config = config or CrawlerConfig.default()
        # 整个进程只有一个限速时钟：注入了会话就沿用它的限速器
        if rate is None:
            rate = session.rate if session is not None else RateLimiter.from_config(self.config)
        self.rate = rate
        self.session = session or FindbizSession(self.config, self.rate)
        self.base = Path(self.config.data_dir)

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ===================== 单个 ID =====================
    def fetch_detail(self, entity_id, kind: EntityKind) -> FetchResult:
        kind = EntityKind(kind)
        eid = pad_id(entity_id)

        salvaged = self.salvage(eid, kind)
        if salvaged is not None:
            return salvaged

        if is_fresh(self.base, eid, kind, max_age=timedelta(hours=self.config.fresh_hours)):
            logger.info("[skip] %s %s already crawled within %sh", kind.value, eid, self.config.fresh_hours)
            return FetchResult(FetchStatus.SKIPPED, reason="fresh")

        retry = 0
        rate_waits = 0
        while True:
            result = self._attempt(eid, kind, retry)

            if result.status is FetchStatus.RATE_LIMITED:
                rate_waits += 1
                cap = self.config.rate_limit_max_waits
                if cap is not None and rate_waits > cap:
                    logger.error("[rate-limit] %s %s still limited after %d waits", kind.value, eid, cap)
                    return FetchResult(FetchStatus.FAILED, reason="rate limited")
                logger.info("[rate-limit] %s %s, cooling down %ss",
                            kind.value, eid, self.config.rate_limit_cooldown)
                time.sleep(self.config.rate_limit_cooldown)
                continue

            if result.status not in RETRYABLE:
                return result

            logger.warning("[retry] attempt %d failed for %s %s: %s (%s)",
                           retry + 1, kind.value, eid, result.status.value, result.reason)

            if retry >= self.config.max_retries:
                logger.error("[failed] %s %s after %d attempts: %s",
                             kind.value, eid, retry + 1, result.reason)
                return FetchResult(FetchStatus.FAILED, reason=result.reason)

            wait = self.config.retry_delay + retry
            logger.info("[retry] waiting %ss before retry", wait)
            time.sleep(wait)

            # 隔一次重建会话；下次尝试时重新握手
            if retry % 2 == 0:
                self.session.close()

            retry += 1

    def salvage(self, eid: str, kind: EntityKind) -> Optional[FetchResult]:
        html_text = load_raw_html(self.base, eid, kind, DETAIL_PAGE_SUFFIX)
        if html_text is None:
            return None

        record = parse_detail(html_text, kind)
        if len(record) < self.config.min_fields:
            logger.info("[salvage] %s %s raw html parsed to %d fields, refetching",
                        kind.value, eid, len(record))
            return None

        record["id"] = eid
        # 原始 html 里没有详情页地址，沿用已有记录里的
        existing = load_detail(self.base, eid, kind) or {}
        if existing.get("source_url"):
            record["source_url"] = existing["source_url"]
        record["crawled_at"] = now_iso()
        logger.info("[salvage] %s %s parsed from saved html (%d fields)", kind.value, eid, len(record))
        return FetchResult(FetchStatus.SUCCESS, record=record, salvaged=True)

    def _attempt(self, eid: str, kind: EntityKind, retry: int) -> FetchResult:
        try:
            self.session.open()

            self.rate.wait()
            logger.info("[search] %s %s (attempt %d)", kind.value, eid, retry + 1)
            status, content = self.session.request(
                "POST", QUERY_LIST_URL,
                data=search_form(eid, kind),
                referer=QUERY_LIST_URL,
            )

            page = classify_search_page(status, content)
            if page is SearchPage.HTTP_ERROR:
                return FetchResult(FetchStatus.NETWORK_ERROR, reason=f"search HTTP {status}")

            # 站点强制的搜索后等待
            time.sleep(self.config.search_delay)

            if page is SearchPage.RATE_LIMITED:
                save_raw_html(self.base, eid, kind, f"rate_limited_{retry + 1}", content)
                return FetchResult(FetchStatus.RATE_LIMITED, reason="rate limit interstitial")

            if page is SearchPage.NOT_FOUND:
                save_raw_html(self.base, eid, kind, SEARCH_NOT_FOUND_SUFFIX, content)
                logger.warning("[not-found] no %s found for %s", kind.value, eid)
                return FetchResult(FetchStatus.NOT_FOUND, reason="no results")

            save_raw_html(self.base, eid, kind, SEARCH_RESULTS_SUFFIX, content)

            detail_url = find_detail_link(content, kind)
            if not detail_url:
                return FetchResult(FetchStatus.PARSE_FAILED, reason="no detail link in search results")
            logger.info("[search] %s %s -> %s", kind.value, eid, detail_url)

            self.rate.wait()
            status, detail_html = self.session.request("GET", detail_url, referer=QUERY_LIST_URL)
            if status != 200:
                return FetchResult(FetchStatus.NETWORK_ERROR, reason=f"detail HTTP {status}")
            if not detail_html or len(detail_html) < self.config.min_detail_length:
                return FetchResult(FetchStatus.NETWORK_ERROR, reason="empty or invalid detail page")

            save_raw_html(self.base, eid, kind, DETAIL_PAGE_SUFFIX, detail_html)

            record = parse_detail(detail_html, kind)
            if len(record) < self.config.min_fields:
                return FetchResult(FetchStatus.PARSE_FAILED,
                                   reason=f"insufficient data extracted ({len(record)} fields)")

            record["id"] = eid
            record["source_url"] = detail_url
            record["crawled_at"] = now_iso()
            logger.info("[detail] fetched %s %s (%d fields)", kind.value, eid, len(record))
            return FetchResult(FetchStatus.SUCCESS, record=record)

        except requests.exceptions.RequestException as e:
            return FetchResult(FetchStatus.NETWORK_ERROR, reason=f"{type(e).__name__}: {e}")

    # ===================== 批量 =====================
    def crawl(self, ids: Iterable, kind: EntityKind, *,
              on_result: Optional[Callable[[str, str, CrawlReport], None]] = None) -> CrawlReport:
        """
        逐个抓取并保存。单个 ID 出错只记日志，不会中断整批。
        on_result(id, status, report) 每处理完一个 ID 调用一次。
        """
        kind = EntityKind(kind)
        report = CrawlReport()

        for raw_id in ids:
            raw_id = str(raw_id).strip()
            if not raw_id:
                continue
            report.processed += 1

            try:
                result = self.fetch_detail(raw_id, kind)
                status = result.status.value

                if result.ok:
                    eid = pad_id(raw_id)
                    save_detail(self.base, eid, kind, result.record, merge=self.config.merge_existing)
                    report.successful += 1
                    report.succeeded.append(eid)
                elif result.status is FetchStatus.SKIPPED:
                    report.skipped += 1
                elif result.status is FetchStatus.NOT_FOUND:
                    report.not_found += 1
                else:
                    report.failed += 1

            except Exception as e:
                logger.exception("[failed] processing %s %s: %s", kind.value, raw_id, e)
                status = "error"
                report.failed += 1

            report.statuses[raw_id] = status
            if on_result is not None:
                on_result(raw_id, status, report)

        logger.info("[crawl] %s done: processed=%d successful=%d skipped=%d not_found=%d failed=%d",
                    kind.value, report.processed, report.successful, report.skipped,
                    report.not_found, report.failed)
        return report
