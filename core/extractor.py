"""Search result extraction and persistence.

:class:`ResultExtractor` turns the HTML of one result-listing page into an
ordered, de-duplicated list of :class:`PageRecord` objects and writes each
page to its own JSON file.

Examples:
    >>> html = '<a jsname="UWckNb" href="https://a.example"><h3>A</h3></a>'
    >>> ResultExtractor().extract(html)
    [PageRecord(rank=1, title='A', url='https://a.example')]
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Set

from bs4 import BeautifulSoup

from core.utils import PAGE_TIMESTAMP_FORMAT, write_json_once

logger = logging.getLogger(__name__)

DEFAULT_RESULT_SELECTOR = 'a[jsname="UWckNb"]'
DEFAULT_TITLE_SELECTOR = "h3"


@dataclass(frozen=True)
class PageRecord:
    """One organic search result.

    Attributes:
        rank: 1-based position among the accepted results of the page.
        title: Heading text of the result (never empty).
        url: Target URL (never empty, unique within the page).
    """

    rank: int
    title: str
    url: str


class ResultExtractor:
    """Parses result pages and persists them as one JSON file per page.

    Args:
        result_selector: CSS selector matching result anchors.
        title_selector: CSS selector for the heading inside an anchor.
    """

    def __init__(
        self,
        result_selector: str = DEFAULT_RESULT_SELECTOR,
        title_selector: str = DEFAULT_TITLE_SELECTOR,
    ) -> None:
        self.result_selector = result_selector
        self.title_selector = title_selector

    def extract(self, page_html: str) -> List[PageRecord]:
        """Extract result records from *page_html*.

        An anchor is accepted only if both its ``href`` and its nested
        heading text are non-empty.  When a URL repeats, the first
        (highest-ranked) occurrence wins.  Ranks are assigned after
        filtering, in document order.

        Args:
            page_html: Full HTML of a result-listing page.

        Returns:
            Accepted records, possibly empty.
        """
        soup = BeautifulSoup(page_html or "", "html.parser")
        records: List[PageRecord] = []
        seen_urls: Set[str] = set()

        anchors = soup.select(self.result_selector)

        for anchor in anchors:
            url = (anchor.get("href") or "").strip()
            heading = anchor.select_one(self.title_selector)
            title = heading.get_text().strip() if heading else ""

            if not url or not title or url in seen_urls:
                continue
            seen_urls.add(url)
            records.append(
                PageRecord(rank=len(records) + 1, title=title, url=url)
            )

        logger.debug(
            "Extracted %d records (%d anchors matched)",
            len(records), len(anchors),
        )
        return records

    def persist(
        self,
        directory: Path,
        query: str,
        page_num: int,
        records: Sequence[PageRecord],
        timestamp: Optional[datetime] = None,
    ) -> Path:
        """Write one page of results to ``{directory}/{page_num}.json``.

        Files are never merged or rewritten: a second write for the same
        page raises :class:`FileExistsError`.

        Args:
            directory: Query output directory.
            query: Query text stored in the document.
            page_num: 1-based page number.
            records: Records of this page, in rank order.
            timestamp: Capture time (defaults to now, local time).

        Returns:
            Path of the written file.
        """
        captured = timestamp or datetime.now()
        document = {
            "query": query,
            "page": page_num,
            "timestamp": captured.strftime(PAGE_TIMESTAMP_FORMAT),
            "result_count": len(records),
            "results": [asdict(record) for record in records],
        }
        path = write_json_once(Path(directory) / f"{page_num}.json", document)
        logger.info(
            "Saved %d results for %r page %d -> %s",
            len(records), query, page_num, path,
        )
        return path
