"""Tests for local text extraction."""

from archivist.services.extraction.text_processor import TextProcessor, title_from_url


def test_html_to_text_strips_tags():
    tp = TextProcessor()
    html = "<h1>Hello</h1><p>World</p><script>evil()</script>"
    result = tp.html_to_text(html)
    assert "Hello" in result
    assert "World" in result
    assert "evil" not in result
    assert "<h1>" not in result


def test_html_to_text_empty_input():
    tp = TextProcessor()
    assert tp.html_to_text("") == ""
    assert tp.html_to_text(None) == ""


def test_html_strips_nav_footer():
    tp = TextProcessor()
    html = "<nav>Menu</nav><main>Content here</main><footer>Copyright</footer>"
    result = tp.html_to_text(html)
    assert "Menu" not in result
    assert "Copyright" not in result
    assert "Content" in result


def test_html_to_text_prefers_main_content():
    tp = TextProcessor()
    html = "<body><aside>Related links</aside><article>The story itself</article></body>"
    assert tp.html_to_text(html) == "The story itself"


def test_html_to_text_custom_selector():
    tp = TextProcessor()
    html = '<body><div class="post-body">Body text</div><div class="ad">Buy now</div></body>'
    assert tp.html_to_text(html, ".post-body") == "Body text"


def test_html_to_text_unescapes_entities():
    tp = TextProcessor()
    assert tp.html_to_text("<p>Fish &amp;amp; chips</p>") == "Fish & chips"


def test_extract_title_sources():
    tp = TextProcessor()
    assert tp.extract_title("<title>Page Title</title><h1>Heading</h1>", "https://x.org/a") == "Page Title"
    assert tp.extract_title("<body><h1>Heading</h1></body>", "https://x.org/a") == "Heading"
    og = '<head><meta property="og:title" content="Shared Title"></head>'
    assert tp.extract_title(og, "https://x.org/a") == "Shared Title"


def test_extract_title_falls_back_to_url():
    tp = TextProcessor()
    assert tp.extract_title("", "https://x.org/blog/my-first_post.html") == "My First Post"


def test_title_from_url_without_path():
    assert title_from_url("https://www.example.com/") == "example.com"
