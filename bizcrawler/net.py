# bizcrawler/net.py
import logging
import random
import threading
import time
from typing import Optional, Tuple

import requests

from bizcrawler.config import (
    BASE_SITE, QUERY_INIT_URL, QUERY_LIST_URL,
    USER_AGENT,
    RATE_LIMIT_SECONDS,
    CrawlerConfig,
)

logger = logging.getLogger(__name__)


# ===================== Session & headers =====================
def build_session(proxy: Optional[str] = None) -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "zh-TW,zh;q=0.9,en;q=0.8",
        "Accept-Encoding": "gzip, deflate",  # 不带 br 更稳
        "Origin": BASE_SITE,
        "Connection": "keep-alive",
    })
    if proxy:
        s.proxies.update({"http": proxy, "https": proxy})
    return s


# ===================== 限速器：全局最小间隔 =====================
class RateLimiter:
    """
    进程内唯一的“上次请求时间”。
    所有发请求的组件共享同一个实例，站点的 2 秒间隔与调用方无关。
    """

    def __init__(self, interval: float = RATE_LIMIT_SECONDS, *,
                 jitter: Tuple[float, float] = (0.0, 0.0),
                 enabled: bool = True):
        self.interval = max(0.0, float(interval))
        self.jitter = jitter
        self.enabled = enabled
        self.last_ts = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CrawlerConfig) -> "RateLimiter":
        return cls(config.rate_limit, jitter=config.rate_jitter, enabled=not config.fast_mode)

    def wait(self) -> float:
        """阻塞到距上次调用至少 interval 秒，返回实际 sleep 的秒数。"""
        with self._lock:
            slept = 0.0
            if self.enabled and self.last_ts:
                elapsed = time.monotonic() - self.last_ts
                if elapsed < self.interval:
                    slept = (self.interval - elapsed) + random.uniform(*self.jitter)
                    time.sleep(slept)
            self.last_ts = time.monotonic()
            return slept


# ===================== 查询会话 =====================
class FindbizSession:
    """
    findbiz 的查询表单只认同一个 cookie 会话：
    先 GET queryInit，再 GET queryList，之后的 POST/GET 都复用这组 cookie。
    本类不做重试，非 200 交给调用方判断。
    """

    def __init__(self, config: CrawlerConfig, rate: RateLimiter):
        self.config = config
        self.rate = rate
        self.http: Optional[requests.Session] = None

    @property
    def is_open(self) -> bool:
        return self.http is not None

    def open(self) -> None:
        if self.http is not None:
            return

        logger.info("[session] initializing session with %s", BASE_SITE)
        http = build_session(self.config.proxy)
        try:
            self.rate.wait()
            http.get(QUERY_INIT_URL, timeout=self.config.timeout)

            time.sleep(self.config.effective_session_init_delay)

            self.rate.wait()
            resp = http.get(QUERY_LIST_URL, timeout=self.config.timeout, allow_redirects=True)
        except requests.exceptions.RequestException:
            # 握手没走完：丢掉这组 cookie，下次 open() 从头来
            http.close()
            raise

        self.http = http
        logger.debug("[session] handshake status=%s cookies=%s",
                     resp.status_code, sorted(http.cookies.keys()))
        logger.info("[session] session initialized")

    def request(self, method: str, url: str, *, data=None,
                referer: Optional[str] = QUERY_LIST_URL) -> Tuple[int, str]:
        if self.http is None:
            raise RuntimeError("session is not open")

        headers = {}
        if referer:
            headers["Referer"] = referer
        resp = self.http.request(method, url, data=data, headers=headers,
                                 timeout=self.config.timeout)
        # text/html 没带 charset 时 requests 会按 ISO-8859-1 解码
        if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
            resp.encoding = "utf-8"
        return resp.status_code, resp.text

    def close(self) -> None:
        if self.http is not None:
            self.http.close()
            self.http = None
            logger.debug("[session] closed")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
