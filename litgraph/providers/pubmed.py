"""
NCBI PubMed 文献检索（E-Utilities 免费 API）。

esearch 取 PubMed ID 列表 → esummary 批量拉元数据（标题、作者、年份、DOI）
→ efetch 拉摘要文本，输出 CandidateArticle。
HTTP 错误与超时直接抛出，由 SearchStage 负责重试退避。
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

import aiohttp

from litgraph.log import get_logger
from litgraph.providers.base import ArticleSearchProvider, CandidateArticle

logger = get_logger(__name__)

ESEARCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"
ESUMMARY_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi"
EFETCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/efetch.fcgi"


def _year_term(year_from: Optional[int], year_to: Optional[int]) -> str:
    if year_from is None and year_to is None:
        return ""
    y0 = int(year_from) if year_from is not None else 1000
    y1 = int(year_to) if year_to is not None else 3000
    y0, y1 = sorted((y0, y1))
    return f' AND ("{y0}"[Date - Publication] : "{y1}"[Date - Publication])'


def parse_abstracts(xml_text: str) -> Dict[str, str]:
    """efetch XML → {pmid: abstract}；带 Label 的结构化摘要拼成 "LABEL: text"。"""
    out: Dict[str, str] = {}
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return out

    for article in root.findall(".//PubmedArticle"):
        pmid = (
            article.findtext(".//MedlineCitation/PMID")
            or article.findtext(".//PMID")
            or ""
        ).strip()
        if not pmid:
            continue
        parts: List[str] = []
        for node in article.findall(".//Abstract/AbstractText"):
            text = "".join(node.itertext()).strip()
            if not text:
                continue
            label = (node.attrib.get("Label") or "").strip()
            parts.append(f"{label}: {text}" if label else text)
        abstract = " ".join(parts).strip()
        if abstract:
            out[pmid] = abstract
    return out


def summary_to_article(pmid: str, doc: Dict[str, Any], abstract: str = "", rank: int = 0) -> CandidateArticle:
    """esummary 记录 → CandidateArticle；relevance_score 随 esearch 排名递减。"""
    title = (doc.get("title") or "").strip().rstrip(".")
    authors = [a.get("name", "") for a in doc.get("authors") or [] if a.get("name")]

    pub_date = doc.get("pubdate") or doc.get("epubdate") or ""
    year: Optional[int] = None
    if pub_date[:4].isdigit():
        year = int(pub_date[:4])

    doi = ""
    for aid in doc.get("articleids") or []:
        if aid.get("idtype") == "doi":
            doi = (aid.get("value") or "").strip()
            break

    refs = str(doc.get("pmcrefcount") or "")

    return CandidateArticle(
        title=title or f"PubMed:{pmid}",
        abstract=abstract,
        authors=authors,
        year=year,
        doi=doi,
        source="pubmed",
        source_id=str(pmid),
        url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        citation_count=int(refs) if refs.isdigit() else 0,
        relevance_score=round(1.0 / (1 + rank * 0.05), 4),
    )


class PubMedSearchProvider(ArticleSearchProvider):
    """PubMed E-Utilities 检索器。每次调用使用短生命周期 ClientSession。"""

    name = "pubmed"

    def __init__(self, api_key: str = "", timeout_seconds: int = 20):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def _base_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {"retmode": "json"}
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        return aiohttp.ClientSession(timeout=timeout, connector=aiohttp.TCPConnector(limit=5))

    # ── 内部请求 ─────────────────────────────────────────────────────────────

    async def _esearch(self, session: aiohttp.ClientSession, term: str, limit: int) -> List[str]:
        params = self._base_params()
        params.update({"db": "pubmed", "term": term, "retmax": str(limit), "sort": "relevance"})
        async with session.get(ESEARCH_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        return data.get("esearchresult", {}).get("idlist", [])

    async def _esummary(self, session: aiohttp.ClientSession, ids: List[str]) -> Dict[str, Any]:
        if not ids:
            return {}
        params = self._base_params()
        params.update({"db": "pubmed", "id": ",".join(ids), "version": "2.0"})
        async with session.get(ESUMMARY_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        return data.get("result", {})

    async def _efetch_abstracts(self, session: aiohttp.ClientSession, ids: List[str]) -> Dict[str, str]:
        if not ids:
            return {}
        params = self._base_params()
        params.update({"db": "pubmed", "id": ",".join(ids), "retmode": "xml"})
        async with session.get(EFETCH_URL, params=params) as resp:
            resp.raise_for_status()
            xml_text = await resp.text()
        return parse_abstracts(xml_text)

    async def _articles_for(self, session: aiohttp.ClientSession, ids: List[str]) -> List[CandidateArticle]:
        result_map = await self._esummary(session, ids)
        abstracts = await self._efetch_abstracts(session, ids)
        articles: List[CandidateArticle] = []
        for rank, pmid in enumerate(ids):
            doc = result_map.get(str(pmid))
            if not isinstance(doc, dict):
                continue
            articles.append(summary_to_article(str(pmid), doc, abstracts.get(str(pmid), ""), rank))
        return articles

    # ── 公开接口 ─────────────────────────────────────────────────────────────

    async def search(
        self,
        topic: str,
        max_results: int = 20,
        year_from: Optional[int] = None,
        year_to: Optional[int] = None,
    ) -> List[CandidateArticle]:
        term = topic + _year_term(year_from, year_to)
        async with self._session() as session:
            ids = await self._esearch(session, term, max_results)
            if not ids:
                logger.info(f"PubMed esearch 无结果: {term!r}")
                return []
            articles = await self._articles_for(session, ids)
        logger.info(f"PubMed 检索完成: term={term!r}, 返回 {len(articles)} 条")
        return articles

    async def fetch_details(self, ids: List[str]) -> List[CandidateArticle]:
        ids = [str(i) for i in ids if str(i).strip()]
        if not ids:
            return []
        async with self._session() as session:
            return await self._articles_for(session, ids)
