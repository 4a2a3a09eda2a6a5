# bizcrawler/parse.py
import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Union
from urllib.parse import urljoin

from lxml import etree
from lxml import html as lxml_html

from bizcrawler.config import (
    BASE_SITE,
    RATE_LIMIT_MARKER, NOT_FOUND_MARKER,
    EntityKind,
)

logger = logging.getLogger(__name__)

RESULT_TABLE_ID = "eslist-table"
CHANGE_DATE_TITLE = "核准變更日期"

SHAREHOLDER_CONTENT_ID = "tabShareHolderContent"
MANAGER_CONTENT_ID = "tabMgrContent"

ROC_YEAR_OFFSET = 1911

ROC_DATE_RE = re.compile(r"(\d+)\s*年\s*(\d+)\s*月\s*(\d+)\s*日")
ROC_DATE_FULL_RE = re.compile(r"^(\d+)年(\d+)月(\d+)日$")

# 一个字母 + 一个字母或数字 + 五位数字，例如 F401010 / ZZ99999
BUSINESS_CODE_RE = re.compile(r"(?<![A-Za-z0-9])[A-Z][A-Z0-9]\d{5}(?![A-Za-z0-9])")
TRAILING_NUMBER_RE = re.compile(r"\s*\d+$")

# 所代表法人：<a onclick="queryCmpy('12345678','...')">
LINKED_ENTITY_RE = re.compile(r"\w+\(\s*['\"](\d{8})['\"]\s*(?:,\s*['\"]([^'\"]*)['\"])?")

NAME_LABELS = {"公司名稱", "商業名稱", "代表人姓名", "負責人姓名", "章程所訂外文公司名稱"}
COMPACT_LABELS = {"公司所在地", "商業所在地", "地址", "登記現況", "現況", "統一編號", "商業統一編號"}
BUSINESS_ITEM_LABELS = {"所營事業資料", "營業項目"}

# 名称格里夹带的弹窗/链接文字
NAME_NOISE_PATTERNS = [
    re.compile(r"「?國際貿易署廠商英文名稱查詢.*", re.S),
    re.compile(r"本項查詢服務.*?關閉", re.S),
    re.compile(r"Google搜尋"),
    re.compile(r"訂閱\s*$", re.M),
]

# 地址/现况格后面的链接文字
COMPACT_NOISE_PATTERNS = [
    re.compile(r"電子地圖"),
    re.compile(r"「查詢最新營業狀況請至.*?」"),
    re.compile(r"地址所屬公司家數[:：]?\s*\d*"),
    re.compile(r"訂閱"),
    re.compile(r"Google搜尋"),
]

Value = Union[str, dict, list, None]

_PARSER = lxml_html.HTMLParser(encoding="utf-8")


# ===================== HTML 能力接口 =====================
class HtmlDocument:
    """
    解析器只用到三件事：按 id 找元素、取表格行、取单元格文字。
    测试里可以直接构造一个 HtmlDocument 传给 parse_* 函数。
    """

    def __init__(self, html_text: str):
        self.text = html_text or ""
        self.tree = None
        if self.text.strip():
            try:
                self.tree = lxml_html.document_fromstring(self.text.encode("utf-8"), parser=_PARSER)
            except (etree.ParserError, ValueError) as e:
                logger.warning("[parse] html parse failed: %s", e)

    def element_by_id(self, element_id: str):
        if self.tree is None:
            return None
        found = self.tree.xpath("//*[@id=$eid]", eid=element_id)
        return found[0] if found else None

    def find_table(self, element_id: str):
        """id 可能直接在 table 上，也可能在包着 table 的 div 上。"""
        el = self.element_by_id(element_id)
        if el is None:
            return None
        if el.tag == "table":
            return el
        tables = el.xpath(".//table")
        return tables[0] if tables else None

    @staticmethod
    def table_rows(table) -> list:
        return table.xpath("./tr | ./thead/tr | ./tbody/tr")

    @staticmethod
    def cells(tr) -> list:
        return tr.xpath("./td")

    @staticmethod
    def cell_text(el) -> str:
        parts: List[str] = []
        _collect_text(el, parts)
        return "".join(parts)


def _collect_text(node, parts: List[str]) -> None:
    # <br> 变成换行；注释/script/style 不取文字
    if not isinstance(node.tag, str):
        return
    if node.tag == "br":
        parts.append("\n")
        return
    if node.tag in ("script", "style"):
        return
    if node.text:
        parts.append(node.text)
    for child in node:
        _collect_text(child, parts)
        if child.tail:
            parts.append(child.tail)


def _as_document(html_or_doc) -> HtmlDocument:
    if isinstance(html_or_doc, HtmlDocument):
        return html_or_doc
    return HtmlDocument(html_or_doc)


# ===================== 搜索结果页 =====================
class SearchPage(str, Enum):
    RESULTS = "results"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    HTTP_ERROR = "http_error"


def classify_search_page(status_code: int, html_text: str) -> SearchPage:
    if status_code != 200:
        return SearchPage.HTTP_ERROR
    text = html_text or ""
    if RATE_LIMIT_MARKER in text:
        return SearchPage.RATE_LIMITED
    if NOT_FOUND_MARKER in text:
        return SearchPage.NOT_FOUND
    return SearchPage.RESULTS


def collect_result_links(html_or_doc, kind: EntityKind) -> Dict[str, str]:
    """{详情 url: 核准變更日期}，只保留本类型的详情链接。"""
    doc = _as_document(html_or_doc)
    table = doc.element_by_id(RESULT_TABLE_ID)
    if table is None:
        return {}

    hits: Dict[str, str] = {}
    for tr in doc.table_rows(table):
        tds = doc.cells(tr)
        if len(tds) < 7:
            continue

        anchors = tr.xpath(".//a[@href]")
        if not anchors:
            continue
        href = re.sub(r"\s+", "", anchors[0].get("href", ""))
        if kind.detail_path not in href:
            continue

        date_td = tds[6]
        if (date_td.get("data-title") or "").strip() != CHANGE_DATE_TITLE:
            continue

        hits[urljoin(BASE_SITE, href)] = doc.cell_text(date_td).strip()
    return hits


def find_detail_link(html_or_doc, kind: EntityKind) -> Optional[str]:
    hits = collect_result_links(html_or_doc, kind)
    if not hits:
        return None
    # 同长度的民国日期字符串按字典序即时间序
    return max(hits.items(), key=lambda kv: kv[1])[0]


# ===================== 字段清洗 =====================
def roc_date(text: str) -> Optional[dict]:
    m = ROC_DATE_RE.search(text or "")
    if not m:
        return None
    return {
        "year": int(m.group(1)) + ROC_YEAR_OFFSET,
        "month": int(m.group(2)),
        "day": int(m.group(3)),
    }


def parse_names(text: str) -> Union[str, List[str]]:
    for pattern in NAME_NOISE_PATTERNS:
        text = pattern.sub("", text)
    names = []
    for seg in text.split("\n"):
        seg = seg.replace("\xa0", " ").strip()
        if len(seg) > 2:
            names.append(seg)
    if len(names) == 1:
        return names[0]
    if not names:
        return text.strip()
    return names


def compact_value(text: str) -> str:
    text = (text or "").lstrip()
    text = re.split(r"[\r\n]", text, maxsplit=1)[0]
    for pattern in COMPACT_NOISE_PATTERNS:
        text = pattern.sub("", text)
    text = text.replace("&nbsp;", "").replace("\xa0", "")
    return re.sub(r"\s+", "", text)


def split_business_items(text: str) -> list:
    """
    "F401010 電子商務 F401021 零售業" ->
    [{"code": "F401010", "description": "電子商務"}, {"code": "F401021", "description": "零售業"}]
    没有代码时按行返回原文。
    """
    text = text or ""
    matches = list(BUSINESS_CODE_RE.finditer(text))
    if not matches:
        return [line.strip() for line in text.splitlines() if line.strip()]

    items = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        desc = re.sub(r"\s+", " ", text[m.end():end].replace("\xa0", " ")).strip()
        desc = TRAILING_NUMBER_RE.sub("", desc).strip()
        items.append({"code": m.group(0), "description": desc})
    return items


def transform_value(label: str, text: str) -> Value:
    if label in NAME_LABELS:
        return parse_names(text)
    if label in COMPACT_LABELS:
        return compact_value(text)
    if label in BUSINESS_ITEM_LABELS:
        return split_business_items(text)

    value = text.strip()
    m = ROC_DATE_FULL_RE.match(value)
    if m:
        return {
            "year": int(m.group(1)) + ROC_YEAR_OFFSET,
            "month": int(m.group(2)),
            "day": int(m.group(3)),
        }
    return value


# ===================== 详情页 =====================
def parse_representative(doc: HtmlDocument, td) -> Value:
    text = doc.cell_text(td).strip()
    raw = etree.tostring(td, encoding="unicode", with_tail=False)
    m = LINKED_ENTITY_RE.search(raw)
    if not m:
        return text

    anchors = td.xpath(".//a")
    name = doc.cell_text(anchors[0]).strip() if anchors else ""
    return {"id": m.group(1), "name": name or (m.group(2) or "").strip() or text}


def parse_shareholders(doc: HtmlDocument) -> Optional[list]:
    if doc.element_by_id(SHAREHOLDER_CONTENT_ID) is None:
        return None
    table = doc.find_table(SHAREHOLDER_CONTENT_ID)
    rows = []
    if table is None:
        return rows

    for tr in doc.table_rows(table):
        tds = doc.cells(tr)
        if len(tds) != 5:
            continue
        rows.append({
            "sequence": doc.cell_text(tds[0]).strip(),
            "title": doc.cell_text(tds[1]).strip(),
            "name": doc.cell_text(tds[2]).strip(),
            "representative": parse_representative(doc, tds[3]),
            "investment": doc.cell_text(tds[4]).strip(),
        })
    return rows


def parse_managers(doc: HtmlDocument) -> Optional[list]:
    if doc.element_by_id(MANAGER_CONTENT_ID) is None:
        return None
    table = doc.find_table(MANAGER_CONTENT_ID)
    rows = []
    if table is None:
        return rows

    for tr in doc.table_rows(table):
        tds = doc.cells(tr)
        if len(tds) != 3:
            continue
        rows.append({
            "sequence": doc.cell_text(tds[0]).strip(),
            "name": doc.cell_text(tds[1]).strip(),
            "appoint_date": roc_date(doc.cell_text(tds[2])),
        })
    return rows


def parse_detail(html_or_doc, kind: EntityKind) -> dict:
    """
    详情页 -> {标签: 值}。找不到内容容器时返回空 dict，由调用方决定算不算失败。
    """
    doc = _as_document(html_or_doc)

    data: dict = {}
    table = doc.find_table(kind.content_id)
    if table is None:
        logger.debug("[parse] #%s not found", kind.content_id)
        return data

    for tr in doc.table_rows(table):
        tds = doc.cells(tr)
        if len(tds) < 2:
            continue

        label = re.sub(r"\s+", "", doc.cell_text(tds[0]).replace("\xa0", ""))
        if not label:
            continue

        value = transform_value(label, doc.cell_text(tds[1]))

        # 同一标签出现多次时，多名称形式优先
        if isinstance(data.get(label), list) and not isinstance(value, list):
            continue
        data[label] = value

    shareholders = parse_shareholders(doc)
    if shareholders is not None:
        data["shareholders"] = shareholders

    managers = parse_managers(doc)
    if managers is not None:
        data["managers"] = managers

    logger.debug("[parse] %s fields=%d", kind.value, len(data))
    return data
