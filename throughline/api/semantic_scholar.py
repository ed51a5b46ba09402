"""Semantic Scholar API client."""
import re
from typing import Any, Dict, List, Optional

from throughline.api.base import BaseAPIClient, RateLimiter
from throughline.models.paper import Paper, parse_paper
from throughline.utils.cancellation import check_cancelled
from throughline.utils.config import settings
from throughline.utils.errors import APIError, PaperNotFoundError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

PAPER_FIELDS = "paperId,title,abstract,year,authors,citationCount"


class SemanticScholarClient(BaseAPIClient):
    """Semantic Scholar Graph + Recommendations API client."""

    def __init__(
        self,
        cache=None,
        api_key: Optional[str] = None,
        delay: Optional[float] = None,
        page_size: Optional[int] = None,
        **kwargs,
    ):
        """
        Initialize Semantic Scholar client.

        Args:
            cache: Response cache (DiskCache, RedisCache) or None
            api_key: API key; unauthenticated use needs a conservative delay
            delay: Minimum seconds between calls
            page_size: Citation/reference page size
        """
        super().__init__(
            base_url=settings.semantic_scholar_base_url,
            rate_limiter=RateLimiter(
                delay if delay is not None else settings.semantic_scholar_delay
            ),
            cache=cache,
            **kwargs,
        )
        self.api_key = api_key if api_key is not None else settings.semantic_scholar_api_key
        self.recommendations_url = settings.semantic_scholar_recommendations_url
        self.page_size = page_size or settings.citation_page_size
        self.paper_id_cache: Dict[str, str] = {}

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers with API key if available."""
        headers = {}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    @staticmethod
    def _to_papers(records: List[Optional[Dict[str, Any]]]) -> List[Paper]:
        papers = []
        for raw in records:
            paper = parse_paper(raw)
            if paper is None:
                logger.debug(f"Skipping unusable record: {str(raw)[:100]}")
                continue
            papers.append(paper)
        return papers

    async def search(
        self, query: str, min_year: Optional[int] = None, limit: int = 25
    ) -> List[Paper]:
        """
        Keyword search.

        Args:
            query: Free-text query
            min_year: Only papers published in or after this year
            limit: Maximum results

        Returns:
            List of papers
        """
        params: Dict[str, Any] = {"query": query, "fields": PAPER_FIELDS, "limit": limit}
        if min_year:
            params["publicationDateOrYear"] = f"{min_year}:"

        result = await self._request(
            "GET", "paper/search", params=params, context=f"search: {query[:30]}"
        )
        papers = self._to_papers((result or {}).get("data") or [])
        logger.info(f"Search '{query[:50]}' returned {len(papers)} papers")
        return papers

    async def _paginate(self, endpoint: str, item_key: str, context: str) -> List[Paper]:
        """
        Fetch every page until a batch is shorter than the page size.

        A failure after some batches succeeded returns the partial set;
        a failure on the first batch propagates.
        """
        records: List[Dict[str, Any]] = []
        offset = 0
        batch_index = 0

        while True:
            await check_cancelled(self.cancellation)
            batch_index += 1
            logger.debug(f"Fetching {context} batch {batch_index} (offset {offset})")

            try:
                result = await self._request(
                    "GET",
                    endpoint,
                    params={
                        "fields": ",".join(f"{item_key}.{f}" for f in PAPER_FIELDS.split(",")),
                        "limit": self.page_size,
                        "offset": offset,
                    },
                    context=f"{context} batch {batch_index}",
                )
            except APIError as e:
                if records:
                    logger.warning(
                        f"Failed to fetch {context} batch {batch_index}, "
                        f"continuing with {len(records)} papers: {e}"
                    )
                    break
                raise

            batch = [item.get(item_key) for item in (result or {}).get("data") or []]
            records.extend(r for r in batch if r)

            if len(batch) < self.page_size:
                break
            offset += self.page_size

        return self._to_papers(records)

    async def get_citations(self, paper_id: str) -> List[Paper]:
        """Get every paper citing this paper."""
        papers = await self._paginate(
            f"paper/{paper_id}/citations", "citingPaper", context="citations"
        )
        logger.info(f"Fetched {len(papers)} citations for paper {paper_id}")
        return papers

    async def get_references(self, paper_id: str) -> List[Paper]:
        """Get every paper referenced by this paper."""
        papers = await self._paginate(
            f"paper/{paper_id}/references", "citedPaper", context="references"
        )
        logger.info(f"Fetched {len(papers)} references for paper {paper_id}")
        return papers

    async def get_recommendations(self, paper_id: str, limit: int = 100) -> List[Paper]:
        """Content-based recommendations seeded with one paper."""
        result = await self._request(
            "POST",
            "papers",
            params={"fields": PAPER_FIELDS, "limit": limit},
            json_body={"positivePaperIds": [paper_id]},
            base_url=self.recommendations_url,
            context="recommendations",
        )
        papers = self._to_papers((result or {}).get("recommendedPapers") or [])
        logger.info(f"Fetched {len(papers)} recommendations for paper {paper_id}")
        return papers

    async def get_author_papers(self, author: str, limit: int = 100) -> List[Paper]:
        """
        Papers by one author.

        Args:
            author: Semantic Scholar author id, or an author name to look up
        """
        author_id = author
        if not re.fullmatch(r"\d+", author.strip()):
            result = await self._request(
                "GET",
                "author/search",
                params={"query": author, "fields": "authorId,name", "limit": 1},
                context=f"author search: {author[:30]}",
            )
            matches = (result or {}).get("data") or []
            if not matches or not matches[0].get("authorId"):
                logger.warning(f"No author found for '{author}'")
                return []
            author_id = matches[0]["authorId"]

        result = await self._request(
            "GET",
            f"author/{author_id}/papers",
            params={"fields": PAPER_FIELDS, "limit": limit},
            context=f"author papers: {author_id}",
        )
        return self._to_papers((result or {}).get("data") or [])

    async def resolve_paper_id(self, paper: Paper) -> str:
        """
        Stable id for a paper, searching by title when missing or implausible.

        Raises:
            PaperNotFoundError: If no search result matches
        """
        if paper.has_plausible_id:
            return paper.paperId

        if paper.title in self.paper_id_cache:
            logger.debug(f"Using cached paperId for '{paper.title[:40]}'")
            return self.paper_id_cache[paper.title]

        logger.info(f"paperId missing or implausible, searching by title: {paper.title[:60]}")
        result = await self._request(
            "GET",
            "paper/search",
            params={"query": paper.title, "fields": "paperId,title", "limit": 5},
            context=f"paper search: {paper.title[:30]}",
        )
        matches = [m for m in (result or {}).get("data") or [] if m.get("paperId")]
        if not matches:
            raise PaperNotFoundError(
                f'Could not find paper in Semantic Scholar: "{paper.title}"'
            )

        wanted = paper.title.strip().lower()
        best = next(
            (m for m in matches if (m.get("title") or "").strip().lower() == wanted),
            matches[0],
        )
        self.paper_id_cache[paper.title] = best["paperId"]
        logger.info(f"Resolved '{paper.title[:40]}' to {best['paperId']}")
        return best["paperId"]
