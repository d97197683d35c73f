"""
Web page parser building the word index and the out-link list of a page.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlsplit
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import Declaration, Doctype, ProcessingInstruction, CData

from .errors import ParseError
from .normalizer import URLNormalizer, crawlable
from ..utils.config import (
    DEFAULT_ALLOWED_TAGS, DEFAULT_BLOCKED_EXTENSIONS, DEFAULT_STOP_WORDS, DEFAULT_TAG_SCORES
)
from ..utils.text import TextProcessor, tokenize


# Navigable strings that are not page text
_NON_TEXT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction, CData)


@dataclass
class ParsedPage:
    """Parsed web page handed to the indexer."""
    url: str
    title: str = ''
    content: str = ''
    words_count: int = 0
    word_positions: Dict[str, List[int]] = field(default_factory=dict)
    stem_count: Dict[str, int] = field(default_factory=dict)
    stem_score: Dict[str, int] = field(default_factory=dict)
    out_links: List[str] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready record for the document store."""
        return {
            'url': self.url,
            'title': self.title,
            'content': self.content,
            'words_count': self.words_count,
            'out_links': list(self.out_links),
            'words_index': [
                {'word': word, 'positions': positions}
                for word, positions in self.word_positions.items()
            ],
            'stems_index': [
                {'stem': stem, 'count': count, 'score': self.stem_score.get(stem, 0)}
                for stem, count in self.stem_count.items()
            ],
        }


class _PageBuilder:
    """Accumulates content and index entries for a single page."""

    def __init__(self, page: ParsedPage, processor: TextProcessor, tag_scores: Dict[str, int]):
        self.page = page
        self.processor = processor
        self.tag_scores = tag_scores
        self.content_parts: List[str] = []

    def add_text(self, text: str, tag: str):
        text = text.strip()
        if not text:
            return
        self.content_parts.append(text)
        self.add_to_index(text, tag)

    def add_to_index(self, text: str, tag: str):
        page = self.page
        score = self.tag_scores.get(tag, 1)

        for word in tokenize(text):
            page.word_positions.setdefault(word, []).append(page.words_count)
            page.words_count += 1

            if self.processor.is_stop_word(word):
                continue

            stem = self.processor.stem(word)
            page.stem_count[stem] = page.stem_count.get(stem, 0) + 1
            page.stem_score[stem] = page.stem_score.get(stem, 0) + score

    def finish(self) -> ParsedPage:
        self.page.content = ' '.join(self.content_parts)
        return self.page


class PageParser:
    """
    Parses a fetched HTML document into a ParsedPage.

    Text is collected by a depth-first walk of <body>, scored by the nearest
    allow-listed enclosing tag. Subtrees rooted at other tags (script, style,
    form controls, ...) are pruned.
    """

    def __init__(self, tag_scores: Optional[Dict[str, int]] = None,
                 allowed_tags: Optional[Iterable[str]] = None,
                 stop_words: Optional[Iterable[str]] = None,
                 blocked_extensions: Optional[Iterable[str]] = None,
                 normalizer: Optional[URLNormalizer] = None,
                 logger: Optional[logging.Logger] = None):
        self.tag_scores = dict(DEFAULT_TAG_SCORES if tag_scores is None else tag_scores)
        self.allowed_tags = frozenset(DEFAULT_ALLOWED_TAGS if allowed_tags is None else allowed_tags)
        self.blocked_extensions = tuple(
            DEFAULT_BLOCKED_EXTENSIONS if blocked_extensions is None else blocked_extensions
        )
        self.processor = TextProcessor(DEFAULT_STOP_WORDS if stop_words is None else stop_words)
        self.normalizer = normalizer or URLNormalizer()
        self.logger = logger or logging.getLogger(__name__)

    def parse(self, url: str, document: BeautifulSoup) -> ParsedPage:
        """
        Parse a document into a ParsedPage.

        Args:
            url: Canonical URL of the page
            document: Parsed HTML tree

        Returns:
            ParsedPage; on malformed input, whatever could be recovered
        """
        builder = _PageBuilder(ParsedPage(url=url), self.processor, self.tag_scores)

        try:
            builder.page.title = self._extract_title(document, builder, urlsplit(url).hostname or '')
            body = document.body
            if body is not None:
                self._walk(body, builder)
        except (AttributeError, TypeError, ValueError, RecursionError) as e:
            self.logger.warning(f"Malformed HTML at {url}, keeping partial page: {e}",
                                extra={"error_type": ParseError.__name__})

        page = builder.finish()

        try:
            page.out_links = self.extract_out_links(document, url)
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.warning(f"Could not extract links from {url}: {e}",
                                extra={"error_type": ParseError.__name__})

        self.logger.debug(f"Parsed {url}: {page.words_count} words, {len(page.out_links)} links")
        return page

    def _extract_title(self, document: BeautifulSoup, builder: _PageBuilder, default_title: str) -> str:
        """Extract page title from <head>, falling back to the host name."""
        head = document.head
        title_tag = head.find('title') if head is not None else None
        title = title_tag.get_text().strip() if title_tag is not None else ''

        if not title:
            return default_title

        builder.add_to_index(title, 'title')
        return title

    def _walk(self, root: Tag, builder: _PageBuilder):
        """Iterative depth-first traversal in document order."""
        stack = [(root, '')]
        while stack:
            node, enclosing_tag = stack.pop()

            if isinstance(node, NavigableString):
                if not isinstance(node, _NON_TEXT_STRINGS):
                    builder.add_text(str(node), enclosing_tag)
                continue

            if not isinstance(node, Tag):
                continue

            tag = node.name.lower() if node.name else ''
            if tag not in self.allowed_tags:
                continue

            stack.extend((child, tag) for child in reversed(node.contents))

    def extract_out_links(self, document: BeautifulSoup, base_url: str) -> List[str]:
        """Resolve, filter, normalize and deduplicate <a href> targets in <body>."""
        body = document.body
        if body is None:
            return []

        base_tag = document.find('base', href=True)
        if base_tag is not None:
            base_url = urljoin(base_url, base_tag['href'].strip())

        links: Dict[str, None] = {}
        for anchor in body.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.startswith('#'):
                continue

            try:
                absolute_url = urljoin(base_url, href)
                if not crawlable(absolute_url, self.blocked_extensions):
                    continue
                links[self.normalizer.normalize(absolute_url)] = None
            except ValueError as e:
                self.logger.debug(f"Skipping malformed link {href!r}: {e}")

        return list(links)
