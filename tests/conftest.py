"""
Shared fixtures: canned findbiz pages and a scripted stand-in for FindbizSession.
"""

import html as html_lib
import sys
from pathlib import Path

# Ensure project root on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from bizcrawler.config import CrawlerConfig, NOT_FOUND_MARKER, RATE_LIMIT_MARKER
from bizcrawler.net import RateLimiter

PADDING = "<!-- " + ("findbiz " * 200) + "-->"

COMPANY_DETAIL_URL = (
    "https://findbiz.nat.gov.tw/fts/query/QueryCmpyDetail/queryCmpyDetail.do"
    "?objectId=SEMyNDU2NjY3Mw==&banNo=24566673"
)


def search_results_html(rows):
    """rows: (href, change_date) or (href, change_date, data_title)."""
    trs = []
    for i, row in enumerate(rows, 1):
        href, date = row[0], row[1]
        title = row[2] if len(row) > 2 else "核准變更日期"
        trs.append(
            f"<tr><td>{i}</td>"
            f"<td><a href=\"{html_lib.escape(href)}\">範例公司{i}</a></td>"
            "<td>24566673</td><td>核准設立</td><td>臺北市</td><td>經濟部商業司</td>"
            f"<td data-title=\"{title}\">{date}</td></tr>"
        )
    return (
        "<html><head><meta charset=\"utf-8\"></head><body>"
        "<table id=\"eslist-table\"><thead><tr><th>序號</th><th>名稱</th><th>統編</th>"
        "<th>現況</th><th>地址</th><th>登記機關</th><th>核准變更日期</th></tr></thead>"
        "<tbody>" + "".join(trs) + "</tbody></table></body></html>"
    )


COMPANY_DETAIL_HTML = """<html><head><meta charset="utf-8"><title>商工登記公示資料查詢服務</title></head>
<body>
<div id="tabCmpyContent">
  <div class="table-responsive">
    <table class="table table-striped">
      <tbody>
        <tr><td class="txt_td">統一編號</td><td>24566673&nbsp;&nbsp;<a href="#">訂閱</a></td></tr>
        <tr><td class="txt_td">登記現況</td><td>核准設立
            <span>「查詢最新營業狀況請至財政部稅務入口網」</span></td></tr>
        <tr><td class="txt_td">公司名稱</td><td>台灣範例股份有限公司<br/>TAIWAN EXAMPLE CO., LTD.<br/>
            <span>「國際貿易署廠商英文名稱查詢」本項查詢服務由國際貿易署提供 關閉</span></td></tr>
        <tr><td class="txt_td">資本總額(元)</td><td>1,000,000,000</td></tr>
        <tr><td class="txt_td">代表人姓名</td><td>王大明</td></tr>
        <tr><td class="txt_td">公司所在地</td><td>臺北市中正區重慶南路1段122號
            <a href="#">電子地圖</a></td></tr>
        <tr><td class="txt_td">登記機關</td><td>經濟部商業發展署</td></tr>
        <tr><td class="txt_td">核准設立日期</td><td>076年02月21日</td></tr>
        <tr><td class="txt_td">最後核准變更日期</td><td>113年05月20日</td></tr>
        <tr><td class="txt_td">所營事業資料</td><td>F401010 國際貿易業<br/>CC01080 電子零組件製造業 2<br/></td></tr>
      </tbody>
    </table>
  </div>
</div>
<div id="tabShareHolderContent">
  <table>
    <thead><tr><th>序號</th><th>職稱</th><th>姓名</th><th>所代表法人</th><th>持有股份數(股)</th></tr></thead>
    <tbody>
      <tr><td>0001</td><td>董事長</td><td>王大明</td><td></td><td>1,000</td></tr>
      <tr><td>0002</td><td>董事</td><td>李小華</td>
          <td><a href="#" onclick="javascript:queryCmpy('12345678','範例投資股份有限公司');">範例投資股份有限公司</a></td>
          <td>2,000</td></tr>
    </tbody>
  </table>
</div>
<div id="tabMgrContent">
  <table>
    <tbody>
      <tr><td>1</td><td>張經理</td><td>110年03月01日</td></tr>
    </tbody>
  </table>
</div>
""" + PADDING + "</body></html>"


BUSINESS_DETAIL_HTML = """<html><head><meta charset="utf-8"></head><body>
<table id="tabBusmContent">
  <tbody>
    <tr><td>商業統一編號</td><td>87654321</td></tr>
    <tr><td>商業名稱</td><td>範例商行</td></tr>
    <tr><td>負責人姓名</td><td>陳一</td></tr>
    <tr><td>現況</td><td>核准設立</td></tr>
    <tr><td>地址</td><td>臺中市西區民權路1號</td></tr>
    <tr><td>營業項目</td><td>F203010 食品什貨、飲料零售業</td></tr>
    <tr><td>核准設立日期</td><td>105年01月04日</td></tr>
  </tbody>
</table>
""" + PADDING + "</body></html>"

RATE_LIMITED_HTML = f"<html><body><div class=\"alert\">{RATE_LIMIT_MARKER}</div></body></html>"
NOT_FOUND_HTML = f"<html><body><div class=\"alert\">{NOT_FOUND_MARKER}</div></body></html>"


class FakeSession:
    """Replays (status, body) tuples; an Exception entry is raised instead."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.calls = []
        self.opened = 0
        self.closed = 0
        self.is_open = False

    def open(self):
        if not self.is_open:
            self.opened += 1
            self.is_open = True

    def close(self):
        if self.is_open:
            self.closed += 1
            self.is_open = False

    def request(self, method, url, *, data=None, referer=None):
        self.calls.append((method, url, data))
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping."""
    recorded = []
    monkeypatch.setattr("time.sleep", recorded.append)
    return recorded


@pytest.fixture
def config(tmp_path):
    return CrawlerConfig(
        data_dir=tmp_path,
        rate_limit=0.0,
        search_delay=2.0,
        rate_limit_cooldown=2.0,
        retry_delay=3.0,
        max_retries=1,
    )


@pytest.fixture
def rate():
    return RateLimiter(0.0, enabled=False)
