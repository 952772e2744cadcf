"""
Tests for the tabpilot.environment.web_tools module.

Parsing only: nothing here goes to the network.
"""

from tabpilot.environment.web_tools import html_to_text, parse_bing_results

BING_PAGE = b"""
<html><body>
<ol id="b_results">
  <li class="b_algo">
    <h2><a href="https://example.com/flights">Cheap <b>flights</b> to Lisbon</a></h2>
    <div class="b_caption"><p>Compare fares from <strong>42 EUR</strong>.</p></div>
  </li>
  <li class="b_ad"><h2><a href="https://ads.example.com">Sponsored</a></h2></li>
  <li class="b_algo b_vlist">
    <h2><a href="https://example.org/guide">Lisbon travel guide</a></h2>
    <p>Everything about Lisbon.</p>
  </li>
  <li class="b_algo"><p>Result without a title</p></li>
</ol>
</body></html>
"""


class TestParseBingResults:
    """Tests for parse_bing_results."""

    def test_organic_results_only(self):
        results = parse_bing_results(BING_PAGE)

        assert [r["url"] for r in results] == [
            "https://example.com/flights",
            "https://example.org/guide",
        ]

    def test_title_and_snippet_text_joined(self):
        first = parse_bing_results(BING_PAGE)[0]

        assert first["title"] == "Cheap flights to Lisbon"
        assert first["content"] == "Compare fares from 42 EUR ."

    def test_max_results(self):
        assert len(parse_bing_results(BING_PAGE, max_results=1)) == 1


class TestHtmlToText:
    """Tests for html_to_text."""

    def test_prefers_article_and_drops_chrome(self):
        html = """
        <html><head><title>Release notes</title><style>p {}</style></head>
        <body>
          <nav>Home | Docs</nav>
          <article><h1>v2.0</h1><!-- hidden --><p>Faster   startup.</p>
          <script>track()</script></article>
          <footer>Copyright</footer>
        </body></html>
        """

        text = html_to_text(html)

        assert text == 'Title is "Release notes". Page content summary:\nv2.0 Faster startup.'

    def test_no_title(self):
        assert html_to_text("<body><p>Just text</p></body>") == "Just text"

    def test_truncation(self):
        text = html_to_text("<body><p>" + "a" * 100 + "</p></body>", max_chars=10)

        assert text == "a" * 10 + "..."
