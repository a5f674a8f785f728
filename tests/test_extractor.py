"""Tests for HTML extraction and Markdown rendering."""

import pytest

from crawljob.errors import ParseFailureError, UnsupportedContentTypeError
from crawljob.extractor import Extractor, ExtractorConfig


BASE = "https://docs.example.com/guide/intro"

DOC = """
<html>
<head>
  <title>Getting Started</title>
  <meta name="description" content="How to install the tool.">
  <meta name="author" content="Docs Team">
  <meta property="article:published_time" content="2024-03-01">
</head>
<body>
  <header class="site-header"><a href="/home">Home</a></header>
  <nav><a href="/nav-only">Nav only</a></nav>
  <div class="cookie-banner">We use cookies</div>
  <main>
    <h1>Getting Started</h1>
    <p>Install the <strong>tool</strong> with <code>pip</code>. See the <a href="../api#top">API</a>.</p>
    <pre><code class="language-python">import tool
tool.run()</code></pre>
    <ul><li>First step</li><li>Second step</li></ul>
    <img src="/img/diagram.png" alt="Diagram">
    <a href="/login" rel="nofollow">Login</a>
    <table><tr><th>Flag</th><th>Meaning</th></tr><tr><td>-v</td><td>verbose</td></tr></table>
  </main>
  <aside class="sidebar">Related links</aside>
  <footer>Copyright</footer>
  <script>var tracking = 1;</script>
</body>
</html>
"""


@pytest.fixture
def extractor():
    return Extractor(ExtractorConfig(use_trafilatura_metadata=False))


class TestMetadata:
    """Title and meta fields."""

    def test_meta_fields(self, extractor):
        content = extractor.extract(DOC, BASE, "text/html; charset=utf-8")
        assert content.title == "Getting Started"
        assert content.description == "How to install the tool."
        assert content.author == "Docs Team"
        assert content.published_date == "2024-03-01"

    def test_title_falls_back_to_og_title(self, extractor):
        html = '<html><head><meta property="og:title" content="OG Title"></head><body><h1>H</h1></body></html>'
        assert extractor.extract(html, BASE).title == "OG Title"

    def test_title_falls_back_to_h1(self, extractor):
        html = "<html><body><h1>Heading Title</h1><p>text</p></body></html>"
        assert extractor.extract(html, BASE).title == "Heading Title"

    def test_untitled(self, extractor):
        assert extractor.extract("<html><body><p>just text</p></body></html>", BASE).title == "Untitled"

    def test_time_element_date(self, extractor):
        html = '<html><body><main><time datetime="2023-12-24">Dec 24</time><p>x</p></main></body></html>'
        assert extractor.extract(html, BASE).published_date == "2023-12-24"


class TestContent:
    """Boilerplate removal and Markdown output."""

    def test_boilerplate_removed(self, extractor):
        content = extractor.extract(DOC, BASE)
        for noise in ("We use cookies", "Related links", "Copyright", "tracking", "Nav only", "Home"):
            assert noise not in content.markdown
            assert noise not in content.text

    def test_markdown_structure(self, extractor):
        markdown = extractor.extract(DOC, BASE).markdown
        assert markdown.startswith("# Getting Started")
        assert "**tool**" in markdown
        assert "`pip`" in markdown
        assert "[API](https://docs.example.com/api#top)" in markdown
        assert "```python\nimport tool\ntool.run()\n```" in markdown
        assert "- First step\n- Second step" in markdown
        assert "![Diagram](https://docs.example.com/img/diagram.png)" in markdown
        assert "| Flag | Meaning |" in markdown
        assert "| --- | --- |" in markdown
        assert "| -v | verbose |" in markdown

    def test_code_blocks_and_images(self, extractor):
        content = extractor.extract(DOC, BASE)
        assert len(content.code_blocks) == 1
        assert content.code_blocks[0].language == "python"
        assert content.code_blocks[0].code == "import tool\ntool.run()"
        assert [image.src for image in content.images] == ["https://docs.example.com/img/diagram.png"]
        assert content.images[0].alt == "Diagram"

    def test_word_count_and_reading_time(self, extractor):
        words = " ".join(["word"] * 450)
        html = f"<html><body><main><p>{words}</p></main></body></html>"
        content = extractor.extract(html, BASE)
        assert content.word_count == 450
        assert content.reading_time_minutes == 3

    def test_readability_picks_main_text_without_main_element(self):
        """Without <main>/<article>, the readability summary is used when it is long enough."""
        paragraph = "This paragraph explains the configuration format in detail. " * 15
        html = (
            "<html><head><title>Config</title></head><body>"
            "<div class='content'><h2>Configuration</h2>"
            f"<p>{paragraph}</p><p>{paragraph}</p></div>"
            "</body></html>"
        )
        content = Extractor(ExtractorConfig(use_trafilatura_metadata=False)).extract(html, BASE)
        assert "explains the configuration format" in content.markdown
        assert content.word_count >= 200

    def test_markdown_metacharacters_escaped(self, extractor):
        html = "<html><body><main><p>Match *.py and *.txt files, see snake_case_name_here</p></main></body></html>"
        markdown = extractor.extract(html, BASE).markdown
        assert r"\*.py and \*.txt" in markdown
        assert r"snake\_case\_name\_here" in markdown

    def test_unresolvable_links_render_as_text(self, extractor):
        html = '<html><body><main><p><a href="mailto:x@y.z">Write to us</a> <img alt="none"></p></main></body></html>'
        markdown = extractor.extract(html, BASE).markdown
        assert markdown == "Write to us"


class TestLinks:
    """Link collection for crawl expansion."""

    def test_links_from_whole_document(self, extractor):
        links = extractor.extract(DOC, BASE).links
        assert "https://docs.example.com/home" in links
        assert "https://docs.example.com/nav-only" in links
        assert "https://docs.example.com/api" in links

    def test_nofollow_skipped(self, extractor):
        assert "https://docs.example.com/login" not in extractor.extract(DOC, BASE).links

    def test_nofollow_included_on_request(self):
        extractor = Extractor(ExtractorConfig(include_nofollow_links=True, use_trafilatura_metadata=False))
        assert "https://docs.example.com/login" in extractor.extract(DOC, BASE).links

    def test_base_href_and_dedup(self, extractor):
        html = (
            '<html><head><base href="https://docs.example.com/v2/"></head><body>'
            '<a href="page">one</a><a href="page#x">two</a><a href="mailto:x@y.z">mail</a>'
            "</body></html>"
        )
        assert extractor.extract(html, BASE).links == ["https://docs.example.com/v2/page"]


class TestErrors:
    """Unsupported and unparseable input."""

    def test_non_html_content_type(self, extractor):
        with pytest.raises(UnsupportedContentTypeError):
            extractor.extract("%PDF-1.4", BASE, "application/pdf")

    def test_empty_document(self, extractor):
        with pytest.raises(ParseFailureError):
            extractor.extract("   ", BASE)

    def test_bytes_input(self, extractor):
        content = extractor.extract("<html><body><p>café</p></body></html>".encode("utf-8"), BASE)
        assert "café" in content.text
