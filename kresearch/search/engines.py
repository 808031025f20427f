"""One adapter per public search surface. Adapters never raise: failure means no results."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import date
from urllib.parse import parse_qs, quote, quote_plus, urlsplit

import httpx
from bs4 import BeautifulSoup

from kresearch.models import SearchResult
from kresearch.search.query import keyword_tokens

logger = logging.getLogger(__name__)

DEFAULT_PROXY_TIMEOUT_SEC = 8.0

FINANCE_MARKERS = ("invest", "gold", "stock", "market", "crypto", "bitcoin", "fund", "bond", "dividend")
NEWS_MARKERS = ("news", "current", "latest", "today", "recent")


def _text(node: object) -> str:
    return node.get_text(strip=True) if node is not None else ""


class SearchEngine(ABC):
    """Normalizes one external search surface into ``SearchResult`` items."""

    name = "engine"

    async def fetch(self, term: str) -> list[SearchResult]:
        """Results for ``term``; any failure is logged and becomes an empty list."""
        try:
            results = await self._fetch(term)
        except Exception as exc:
            logger.warning("[%s] failed for %r: %s", self.name, term, exc)
            return []
        logger.info("[%s] %d results for %r", self.name, len(results), term)
        return results

    @abstractmethod
    async def _fetch(self, term: str) -> list[SearchResult]:
        ...


# --- Direct fetch ---

class DirectEngine(SearchEngine):
    """Single GET straight at a public JSON/XML endpoint."""

    def __init__(self, http: httpx.AsyncClient, timeout_sec: float = DEFAULT_PROXY_TIMEOUT_SEC) -> None:
        self._http = http
        self._timeout_sec = timeout_sec

    async def _get(self, url: str, params: dict[str, str | int]) -> httpx.Response:
        response = await self._http.get(url, params=params, timeout=self._timeout_sec)
        response.raise_for_status()
        return response


class WikipediaEngine(DirectEngine):
    name = "Wikipedia"
    url = "https://en.wikipedia.org/w/api.php"
    limit = 3

    async def _fetch(self, term: str) -> list[SearchResult]:
        response = await self._get(self.url, {
            "action": "opensearch",
            "search": term,
            "limit": self.limit,
            "namespace": 0,
            "format": "json",
        })
        data = response.json()
        # opensearch answers [query, titles, descriptions, urls]
        if not isinstance(data, list) or len(data) < 4:
            return []
        _, titles, descriptions, urls = data[:4]
        results: list[SearchResult] = []
        for i, title in enumerate(titles[: self.limit]):
            url = urls[i] if i < len(urls) else ""
            if title and url:
                snippet = descriptions[i] if i < len(descriptions) and descriptions[i] else "Wikipedia article"
                results.append(SearchResult(title=title, url=url, snippet=snippet, source=self.name))
        return results


class ArxivEngine(DirectEngine):
    name = "Academic"
    url = "https://export.arxiv.org/api/query"
    limit = 3

    async def _fetch(self, term: str) -> list[SearchResult]:
        response = await self._get(self.url, {
            "search_query": f"all:{term}",
            "start": 0,
            "max_results": self.limit,
        })
        soup = BeautifulSoup(response.text, "xml")
        results: list[SearchResult] = []
        for entry in soup.find_all("entry")[: self.limit]:
            title = " ".join(_text(entry.find("title")).split())
            summary = " ".join(_text(entry.find("summary")).split())
            results.append(SearchResult(
                title=title,
                url=_text(entry.find("id")),
                snippet=summary[:200] + "...",
                source="arXiv",
            ))
        return results


# --- Proxy-fronted ---

class ProxiedEngine(SearchEngine):
    """Engine reached through a cross-origin relay.

    Relays are unreliable, so when no relay is configured or the relay leg
    fails the engine answers with one synthetic result that points the user
    at a direct manual search instead of returning nothing.
    """

    query_param = "q"
    limit = 5

    def __init__(
        self,
        http: httpx.AsyncClient,
        relay_url: str | None = None,
        timeout_sec: float = DEFAULT_PROXY_TIMEOUT_SEC,
    ) -> None:
        self._http = http
        self._relay_url = relay_url
        self._timeout_sec = timeout_sec

    @abstractmethod
    def target_url(self, term: str) -> str:
        ...

    @abstractmethod
    def direct_url(self, query: str) -> str:
        """Link the user can open to run the search by hand."""
        ...

    @abstractmethod
    def parse(self, text: str) -> list[SearchResult]:
        ...

    async def _fetch(self, term: str) -> list[SearchResult]:
        target = self.target_url(term)
        if self._relay_url:
            try:
                response = await self._http.get(
                    self._relay_url.format(url=quote(target, safe="")), timeout=self._timeout_sec,
                )
                response.raise_for_status()
                results = self.parse(response.text)[: self.limit]
                if results:
                    return results
                logger.info("[%s] relay page for %s had no results", self.name, target)
            except Exception as exc:
                logger.warning("[%s] relay failed for %s: %s", self.name, target, exc)
        else:
            logger.debug("[%s] no relay configured, answering synthetically for %s", self.name, target)
        return self.synthetic(target, term)

    def synthetic(self, target: str, term: str) -> list[SearchResult]:
        values = parse_qs(urlsplit(target).query).get(self.query_param)
        query = values[0] if values else term
        return [SearchResult(
            title=f"{self.name} Search: {query}",
            url=self.direct_url(query),
            snippet=(
                f'Search attempted for "{query}" but live retrieval through the relay is currently '
                f"unavailable. Open this link to search {self.name} directly."
            ),
            source=self.name,
        )]


class DuckDuckGoEngine(ProxiedEngine):
    name = "DuckDuckGo"

    def target_url(self, term: str) -> str:
        return f"https://api.duckduckgo.com/?q={quote_plus(term)}&format=json&no_html=1&skip_disambig=1"

    def direct_url(self, query: str) -> str:
        return f"https://duckduckgo.com/?q={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        data = json.loads(text)
        results: list[SearchResult] = []
        if data.get("Answer"):
            results.append(SearchResult(
                title="DuckDuckGo Instant Answer",
                url=data.get("AnswerURL") or "https://duckduckgo.com",
                snippet=str(data["Answer"]),
                source=self.name,
            ))
        if data.get("Abstract"):
            results.append(SearchResult(
                title=data.get("AbstractSource") or "DuckDuckGo Abstract",
                url=data.get("AbstractURL") or "https://duckduckgo.com",
                snippet=data["Abstract"],
                source=self.name,
            ))
        for topic in (data.get("RelatedTopics") or [])[:3]:
            if isinstance(topic, dict) and topic.get("Text") and topic.get("FirstURL"):
                results.append(SearchResult(
                    title=topic["Text"].split(" - ")[0] or "DuckDuckGo Result",
                    url=topic["FirstURL"],
                    snippet=topic["Text"],
                    source=self.name,
                ))
        return results


def _rss_items(text: str, source: str, limit: int, with_date: bool = False) -> list[SearchResult]:
    soup = BeautifulSoup(text, "xml")
    results: list[SearchResult] = []
    for item in soup.find_all("item")[:limit]:
        title = _text(item.find("title"))
        link = _text(item.find("link"))
        description = _text(item.find("description"))
        if not (title and link):
            continue
        if with_date:
            description = f"{description} ({_text(item.find('pubDate'))})"
        results.append(SearchResult(title=title, url=link, snippet=description, source=source))
    return results


class BingEngine(ProxiedEngine):
    name = "Bing"

    def target_url(self, term: str) -> str:
        return f"https://www.bing.com/search?q={quote_plus(term)}&format=rss"

    def direct_url(self, query: str) -> str:
        return f"https://www.bing.com/search?q={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        return _rss_items(text, self.name, self.limit)


class NewsEngine(ProxiedEngine):
    name = "News"

    def target_url(self, term: str) -> str:
        return f"https://news.google.com/rss/search?q={quote_plus(term)}&hl=en-US&gl=US&ceid=US:en"

    def direct_url(self, query: str) -> str:
        return f"https://news.google.com/search?q={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        return _rss_items(text, self.name, self.limit, with_date=True)


class RedditEngine(ProxiedEngine):
    name = "Reddit"

    def target_url(self, term: str) -> str:
        return f"https://www.reddit.com/search.json?q={quote_plus(term)}&limit=5&sort=relevance"

    def direct_url(self, query: str) -> str:
        return f"https://www.reddit.com/search/?q={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        children = (json.loads(text).get("data") or {}).get("children") or []
        results: list[SearchResult] = []
        for post in children:
            data = post.get("data") if isinstance(post, dict) else None
            if not data or not data.get("title"):
                continue
            results.append(SearchResult(
                title=data["title"],
                url=f"https://reddit.com{data.get('permalink', '')}",
                snippet=(data.get("selftext") or "")[:200] or data["title"],
                source=self.name,
            ))
        return results


class BaiduEngine(ProxiedEngine):
    name = "Baidu"
    query_param = "wd"
    limit = 3

    def target_url(self, term: str) -> str:
        return f"https://www.baidu.com/s?wd={quote_plus(term)}&rn=5"

    def direct_url(self, query: str) -> str:
        return f"https://www.baidu.com/s?wd={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        soup = BeautifulSoup(text, "lxml")
        results: list[SearchResult] = []
        for element in soup.select(".result, .c-container")[: self.limit]:
            link = element.select_one("h3 a")
            if link is None:
                continue
            href = link.get("href") or ""
            if href and not href.startswith("http"):
                href = f"https://www.baidu.com{href}"
            results.append(SearchResult(
                title=link.get_text(strip=True),
                url=href,
                snippet=_text(element.select_one(".c-abstract")),
                source=self.name,
            ))
        return results


class YandexEngine(ProxiedEngine):
    name = "Yandex"
    query_param = "query"
    limit = 3

    def target_url(self, term: str) -> str:
        return f"https://yandex.com/search/xml?query={quote_plus(term)}&l10n=en&sortby=rlv"

    def direct_url(self, query: str) -> str:
        return f"https://yandex.com/search/?text={quote_plus(query)}"

    def parse(self, text: str) -> list[SearchResult]:
        soup = BeautifulSoup(text, "xml")
        results: list[SearchResult] = []
        for group in soup.find_all("group")[: self.limit]:
            doc = group.find("doc")
            if doc is None:
                continue
            results.append(SearchResult(
                title=_text(doc.find("title")),
                url=_text(doc.find("url")),
                snippet=_text(doc.find("headline")),
                source=self.name,
            ))
        return results


# --- Fallback generator ---

class FallbackEngine(SearchEngine):
    """Direct "search this on <engine>" links, used when every live engine came back empty."""

    name = "Fallback"

    async def _fetch(self, term: str) -> list[SearchResult]:
        return self.suggest(term)

    def suggest(self, query: str) -> list[SearchResult]:
        words = keyword_tokens(query)
        primary = words[0] if words else query.split(" ")[0]
        terms = list(dict.fromkeys([words[0], " ".join(words[:2])])) if words else [query[:30]]

        lowered = query.lower()
        is_finance = any(marker in w for w in words for marker in FINANCE_MARKERS)
        is_news = "news" in primary or any(m in lowered for m in NEWS_MARKERS) or str(date.today().year) in lowered

        results: list[SearchResult] = []
        for index, term in enumerate(terms[:2]):
            encoded = quote_plus(term)
            results.append(SearchResult(
                title=f'Search "{term}" on Google',
                url=f"https://www.google.com/search?q={encoded}",
                snippet=f'Direct search for "{term}" on Google. This search term was extracted from your original query.',
                source="Google Search",
            ))
            results.append(SearchResult(
                title=f'Search "{term}" on Bing',
                url=f"https://www.bing.com/search?q={encoded}",
                snippet=f'Direct search for "{term}" on Bing. Alternative search engine for broader results.',
                source="Bing Search",
            ))
            if index > 0:
                continue
            if is_finance:
                results.append(SearchResult(
                    title=f"Financial News: {term}",
                    url=f"https://finance.yahoo.com/search?p={encoded}",
                    snippet=f'Search for financial news and data about "{term}" on Yahoo Finance.',
                    source="Yahoo Finance",
                ))
                results.append(SearchResult(
                    title=f"Market Data: {term}",
                    url=f"https://www.marketwatch.com/search?q={encoded}",
                    snippet=f'Find market data and analysis for "{term}" on MarketWatch.',
                    source="MarketWatch",
                ))
            if is_news:
                results.append(SearchResult(
                    title=f"Latest News: {term}",
                    url=f"https://news.google.com/search?q={encoded}",
                    snippet=f'Find the latest news about "{term}" on Google News.',
                    source="Google News",
                ))
        return results


DIRECT_ENGINES: dict[str, type[DirectEngine]] = {
    "Wikipedia": WikipediaEngine,
    "Academic": ArxivEngine,
}

PROXIED_ENGINES: dict[str, type[ProxiedEngine]] = {
    "DuckDuckGo": DuckDuckGoEngine,
    "Bing": BingEngine,
    "Reddit": RedditEngine,
    "Baidu": BaiduEngine,
    "Yandex": YandexEngine,
    "News": NewsEngine,
}

DEFAULT_ENGINE_ORDER = ["Wikipedia", "Academic", "DuckDuckGo", "Bing", "Reddit", "Baidu", "Yandex", "News"]


def build_engines(
    http: httpx.AsyncClient,
    names: list[str] | None = None,
    relay_url: str | None = None,
    proxy_timeout_sec: float = DEFAULT_PROXY_TIMEOUT_SEC,
) -> list[SearchEngine]:
    """Instantiate engines in declaration order, skipping unknown names."""
    engines: list[SearchEngine] = []
    for name in names or DEFAULT_ENGINE_ORDER:
        if name in DIRECT_ENGINES:
            engines.append(DIRECT_ENGINES[name](http, timeout_sec=proxy_timeout_sec))
        elif name in PROXIED_ENGINES:
            engines.append(PROXIED_ENGINES[name](http, relay_url=relay_url, timeout_sec=proxy_timeout_sec))
        else:
            logger.warning("Search engine '%s' unknown, skipping", name)
    return engines
