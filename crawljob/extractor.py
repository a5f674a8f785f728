"""HTML extraction: metadata, boilerplate stripping, Markdown, links, code blocks."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Comment, Tag
from markdownify import ATX, BACKSLASH, markdownify
from readability import Document as ReadabilityDocument
import trafilatura

from .constants import WORDS_PER_MINUTE
from .errors import ParseFailureError, UnsupportedContentTypeError
from .types import CodeBlock, ExtractedContent, ImageRef
from .url import resolve_url


logger = logging.getLogger(__name__)

HTML_MIME_TYPES = frozenset({"text/html", "application/xhtml+xml"})

NOISE_TAGS = ("script", "style", "noscript", "iframe", "template", "svg", "canvas", "object", "embed")
BOILERPLATE_TAGS = ("header", "footer", "nav", "aside", "menu", "form", "button", "dialog")
BOILERPLATE_MARKERS = re.compile(
    r"(^|[-_\s])("
    r"nav|navbar|navigation|menu|sidebar|side-bar|breadcrumbs?|footer|"
    r"ads?|advert|advertisement|sponsored|banner|cookie|cookies|consent|"
    r"social|share|sharing|popup|modal|newsletter|skip-link"
    r")([-_\s]|$)",
    re.IGNORECASE,
)
PROTECTED_TAGS = frozenset({"html", "body", "main", "article"})
LANGUAGE_CLASS = re.compile(r"^(?:language|lang)-([\w+#.-]+)$", re.IGNORECASE)


@dataclass(slots=True)
class ExtractorConfig:
    """Config for HTML extraction."""

    include_nofollow_links: bool = False
    use_readability: bool = True
    readability_min_chars: int = 250
    use_trafilatura_metadata: bool = True
    words_per_minute: int = WORDS_PER_MINUTE


class Extractor:
    """Convert one HTML document into `ExtractedContent`.

    Links are collected from the whole document (navigation included) so the
    crawl can expand; the Markdown body is rendered from the main content only.
    """

    def __init__(self, config: ExtractorConfig | None = None) -> None:
        self.config = config or ExtractorConfig()

    def extract(
        self,
        html: str | bytes,
        base_url: str,
        content_type: str | None = None,
    ) -> ExtractedContent:
        mime = (content_type or "").split(";", maxsplit=1)[0].strip().lower()
        if mime and mime not in HTML_MIME_TYPES:
            raise UnsupportedContentTypeError(content_type)

        html_text = self._coerce_html_text(html)
        if not html_text.strip():
            raise ParseFailureError(f"Empty document at {base_url}")

        try:
            soup = BeautifulSoup(html_text, "lxml")
        except Exception as exc:
            raise ParseFailureError(f"Could not parse HTML at {base_url}: {exc}") from exc

        if soup.find() is None:
            raise ParseFailureError(f"No HTML elements in document at {base_url}")

        base = self._base_href(soup, base_url)
        links = self._extract_links(soup, base)

        title = self._extract_title(soup)

        description = self._meta_content(soup, ("name", "description"), ("property", "og:description"))
        author = self._meta_content(soup, ("name", "author"), ("property", "article:author"))
        published = self._meta_content(
            soup,
            ("property", "article:published_time"),
            ("name", "date"),
            ("name", "publish-date"),
            ("itemprop", "datePublished"),
        )
        if published is None:
            time_tag = soup.find("time", attrs={"datetime": True})
            if time_tag is not None:
                published = str(time_tag.get("datetime")).strip() or None

        if self.config.use_trafilatura_metadata and None in (description, author, published):
            fallback = self._trafilatura_metadata(html_text, base_url)
            description = description or fallback.get("description")
            author = author or fallback.get("author")
            published = published or fallback.get("date")

        self._strip_noise(soup)
        root = self._content_root(soup, html_text)

        code_blocks = self._extract_code_blocks(root)
        images = self._extract_images(root, base)
        text = re.sub(r"\s+", " ", root.get_text(" ", strip=True)).strip()
        word_count = self._word_count(text)
        markdown = to_markdown(root, base)

        return ExtractedContent(
            title=title or "Untitled",
            markdown=markdown,
            text=text,
            word_count=word_count,
            reading_time_minutes=math.ceil(word_count / self.config.words_per_minute),
            description=description,
            author=author,
            published_date=published,
            links=links,
            images=images,
            code_blocks=code_blocks,
        )

    @staticmethod
    def _coerce_html_text(html: str | bytes) -> str:
        if isinstance(html, bytes):
            return html.decode("utf-8", errors="replace")
        return html

    @staticmethod
    def _word_count(text: str) -> int:
        return len(re.findall(r"\b\w+\b", text))

    @staticmethod
    def _base_href(soup: BeautifulSoup, base_url: str) -> str:
        base_tag = soup.find("base", href=True)
        if base_tag is None:
            return base_url
        resolved = resolve_url(base_url, str(base_tag["href"]), normalize=False)
        return resolved or base_url

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> list[str]:
        out: list[str] = []
        seen: set[str] = set()

        for element in soup.find_all(["a", "area"]):
            href = element.get("href")
            if not href:
                continue

            rel_values = {value.lower() for value in (element.get("rel") or [])}
            if not self.config.include_nofollow_links and "nofollow" in rel_values:
                continue

            resolved = resolve_url(base_url, str(href))
            if not resolved or resolved in seen:
                continue

            seen.add(resolved)
            out.append(resolved)

        return out

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> str | None:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(" ", strip=True)

        og_title = soup.find("meta", attrs={"property": "og:title"})
        if og_title is not None and str(og_title.get("content") or "").strip():
            return str(og_title["content"]).strip()

        heading = soup.find("h1")
        if heading:
            text = heading.get_text(" ", strip=True)
            if text:
                return text
        return None

    @staticmethod
    def _meta_content(soup: BeautifulSoup, *selectors: tuple[str, str]) -> str | None:
        for attr, value in selectors:
            tag = soup.find("meta", attrs={attr: re.compile(f"^{re.escape(value)}$", re.IGNORECASE)})
            if tag is None:
                continue
            content = str(tag.get("content") or "").strip()
            if content:
                return content
        return None

    @staticmethod
    def _trafilatura_metadata(html_text: str, url: str) -> dict[str, str]:
        try:
            metadata = trafilatura.extract_metadata(html_text, default_url=url)
        except Exception as exc:
            logger.debug("Trafilatura metadata failed: %s: %s", exc.__class__.__name__, exc)
            return {}
        if metadata is None:
            return {}

        out: dict[str, str] = {}
        for key in ("description", "author", "date"):
            value = getattr(metadata, key, None)
            if isinstance(value, str) and value.strip():
                out[key] = value.strip()
        return out

    @staticmethod
    def _strip_noise(soup: BeautifulSoup) -> None:
        for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
            comment.extract()

        doomed: list[Tag] = list(soup.find_all(NOISE_TAGS))
        doomed.extend(soup.find_all(BOILERPLATE_TAGS))

        for element in soup.find_all(True):
            if element.name in PROTECTED_TAGS or element.attrs is None:
                continue
            markers = " ".join(element.get("class") or [])
            markers = f"{markers} {element.get('id') or ''} {element.get('role') or ''}"
            if element.get("role") in ("navigation", "banner", "contentinfo", "complementary"):
                doomed.append(element)
            elif BOILERPLATE_MARKERS.search(markers):
                doomed.append(element)

        for element in doomed:
            if not element.decomposed:
                element.decompose()

    def _content_root(self, soup: BeautifulSoup, html_text: str) -> Tag:
        for name in ("main", "article"):
            candidate = soup.find(name)
            if candidate is not None and candidate.get_text(strip=True):
                return candidate

        if self.config.use_readability:
            summary = self._readability_root(html_text)
            if summary is not None:
                return summary
        return soup.body or soup

    def _readability_root(self, html_text: str) -> Tag | None:
        """Readability's main-content guess, used only when it holds enough text."""

        try:
            summary_html = ReadabilityDocument(html_text).summary(html_partial=True)
        except Exception as exc:
            logger.debug("Readability summary failed: %s: %s", exc.__class__.__name__, exc)
            return None

        fragment = BeautifulSoup(summary_html, "lxml")
        self._strip_noise(fragment)
        if len(fragment.get_text(" ", strip=True)) < self.config.readability_min_chars:
            return None
        return fragment.body or fragment

    @staticmethod
    def _extract_code_blocks(root: Tag) -> list[CodeBlock]:
        blocks: list[CodeBlock] = []
        for pre in root.find_all("pre"):
            code_tag = pre.find("code") or pre
            code = code_tag.get_text().strip("\n")
            if not code.strip():
                continue
            blocks.append(CodeBlock(language=code_language(pre), code=code))
        return blocks

    @staticmethod
    def _extract_images(root: Tag, base_url: str) -> list[ImageRef]:
        images: list[ImageRef] = []
        seen: set[str] = set()
        for img in root.find_all("img"):
            src = img.get("src") or img.get("data-src")
            resolved = resolve_url(base_url, str(src), normalize=False) if src else None
            if not resolved or resolved in seen:
                continue
            seen.add(resolved)
            images.append(ImageRef(src=resolved, alt=str(img.get("alt") or "").strip()))
        return images


def code_language(pre: Tag) -> str:
    """Language declared on a `<pre>` or its `<code>` via `language-*`/`lang-*` classes."""

    candidates = []
    code_tag = pre.find("code")
    if code_tag is not None:
        candidates.extend(code_tag.get("class") or [])
    candidates.extend(pre.get("class") or [])
    for css_class in candidates:
        match = LANGUAGE_CLASS.match(css_class)
        if match:
            return match.group(1).lower()
    return str(pre.get("data-lang") or "").strip().lower()


def to_markdown(root: Tag, base_url: str) -> str:
    """Render a cleaned content root as Markdown with absolute link and image URLs.

    Rewrites `href`/`src` attributes of `root` in place.
    """

    for anchor in root.find_all("a"):
        href = anchor.get("href")
        resolved = resolve_url(base_url, str(href), normalize=False) if href else None
        if resolved:
            anchor["href"] = resolved
        elif anchor.has_attr("href"):
            del anchor["href"]

    for img in root.find_all("img"):
        src = img.get("src") or img.get("data-src")
        resolved = resolve_url(base_url, str(src), normalize=False) if src else None
        if resolved:
            img["src"] = resolved
        else:
            img.decompose()

    markdown = markdownify(
        str(root),
        heading_style=ATX,
        bullets="-",
        newline_style=BACKSLASH,
        code_language_callback=code_language,
        escape_misc=False,
        strip=["script", "style"],
    )
    markdown = re.sub(r"[ \t]+\n", "\n", markdown)
    return re.sub(r"\n{3,}", "\n\n", markdown).strip()


__all__ = [
    "Extractor",
    "ExtractorConfig",
    "HTML_MIME_TYPES",
    "code_language",
    "to_markdown",
]
