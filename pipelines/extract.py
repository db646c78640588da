"""Content extraction: raw HTML to (title, body) text."""

from dataclasses import dataclass

from bs4 import BeautifulSoup

BLOCK_SELECTOR = "p, h1, h2, h3, h4"


@dataclass(frozen=True)
class ExtractedContent:
    title: str
    body: str


def extract_content(html: str, url: str) -> ExtractedContent:
    """Extract title and body text from a page.

    ``body`` is the text of every paragraph and h1-h4 heading in document
    order; each element's text nodes are joined with single spaces and the
    elements are joined with single spaces. ``title`` is the text of the
    first ``<title>`` element, or ``url`` when it is missing or blank.
    """
    soup = BeautifulSoup(html, "html.parser")

    body = " ".join(elem.get_text(" ") for elem in soup.select(BLOCK_SELECTOR))

    title_tag = soup.find("title")
    title = title_tag.get_text() if title_tag is not None else ""
    if not title.strip():
        title = url

    return ExtractedContent(title=title, body=body)
