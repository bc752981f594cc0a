"""
Link extraction from fetched HTML documents.
"""

import logging
from typing import List

from bs4 import BeautifulSoup


class ContentParser:
    """Extracts outbound links from HTML content."""

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def extract_links(self, url: str, html_content: str) -> List[str]:
        """
        Extract absolute anchor hrefs in document order.

        Only hrefs that already carry a scheme prefix (``http``) are returned;
        relative links are not resolved. Duplicates are kept, callers
        deduplicate on visit.

        Args:
            url: The URL the content was fetched from, used in log messages
            html_content: Raw HTML content

        Returns:
            List of href values
        """
        if not html_content:
            return []

        try:
            soup = BeautifulSoup(html_content, self.features)
        except Exception as e:
            self.logger.error(f"Error parsing content from {url}: {e}")
            return []

        links = []
        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if href.startswith('http'):
                links.append(href)

        self.logger.debug(f"Extracted {len(links)} links from {url}")
        return links
