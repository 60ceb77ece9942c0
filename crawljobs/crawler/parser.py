"""
HTML parser extracting title, outbound links and visible text.
"""

import re
import logging
from typing import List, Optional
from urllib.parse import urljoin, urlparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment


# Elements whose attribute carries a followable hyperlink
LINK_TAGS = ('a', 'area')

# Elements whose text never renders
INVISIBLE_TAGS = ('script', 'style', 'template')


@dataclass
class ParsedPage:
    """Container for parsed web page content."""
    title: Optional[str] = None
    links: List[str] = field(default_factory=list)
    text_content: str = ''


def resolve_link(base_url: str, href: str) -> Optional[str]:
    """
    Resolve ``href`` against ``base_url``.
    
    Returns the absolute URL, or None when the result has no scheme or host
    (e.g. ``mailto:``/``javascript:`` links, or a relative base).
    An already-absolute ``href`` comes back unchanged.
    """
    href = href.strip()
    try:
        parsed = urlparse(href)
        # urljoin re-serializes, dropping an empty "?" or "#"
        if parsed.scheme and parsed.netloc:
            absolute_url = href
        else:
            absolute_url = urljoin(base_url, href)
            parsed = urlparse(absolute_url)
        # Touch .port so malformed ports surface as ValueError here
        parsed.port
    except ValueError:
        return None
    
    if not parsed.scheme or not parsed.netloc:
        return None
    return absolute_url


class ContentParser:
    """
    Parses HTML content into a ParsedPage.
    
    Parsing is a pure function of its inputs and never raises: malformed
    markup yields whatever could be recovered, and an unexpected parser
    failure yields an empty page.
    """
    
    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)
        
        self.whitespace_pattern = re.compile(r'\s+')
    
    def parse(self, html_content: str, base_url: str) -> ParsedPage:
        """
        Parse HTML content and extract title, links and text.
        
        Args:
            html_content: Raw HTML content
            base_url: URL the document was served from, for link resolution
            
        Returns:
            ParsedPage with extracted data
        """
        if not html_content:
            return ParsedPage()
        
        try:
            soup = BeautifulSoup(html_content, self.features)
            
            parsed_page = ParsedPage()
            self._extract_title(soup, parsed_page)
            self._extract_links(soup, parsed_page, base_url)
            
            for element in soup(list(INVISIBLE_TAGS)):
                element.decompose()
            
            for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
                comment.extract()
            
            self._extract_text(soup, parsed_page)
            
            self.logger.debug(f"Parsed {base_url}: {len(parsed_page.links)} links, "
                              f"{len(parsed_page.text_content)} chars of text")
            return parsed_page
        
        except Exception as e:
            self.logger.error(f"Error parsing content from {base_url}: {e}")
            return ParsedPage()
    
    def _extract_title(self, soup: BeautifulSoup, parsed_page: ParsedPage):
        """Extract page title."""
        title_tag = soup.find('title')
        if title_tag:
            parsed_page.title = self._clean_text(title_tag.get_text())
    
    def _extract_links(self, soup: BeautifulSoup, parsed_page: ParsedPage, base_url: str):
        """Collect hyperlinks in document order, resolved against base_url."""
        links = []
        
        for link in soup.find_all(LINK_TAGS, href=True):
            absolute_url = resolve_link(base_url, link['href'])
            if absolute_url:
                links.append(absolute_url)
        
        parsed_page.links = links
    
    def _extract_text(self, soup: BeautifulSoup, parsed_page: ParsedPage):
        """Extract visible text from the body, or the whole document without one."""
        content_element = soup.find('body') or soup
        text_content = content_element.get_text(separator=' ', strip=True)
        parsed_page.text_content = self._clean_text(text_content)
    
    def _clean_text(self, text: str) -> str:
        """Collapse runs of whitespace into single spaces."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
