"""Unit tests for sourcereg.parser."""

from __future__ import annotations

from sourcereg.parser import (
    child_list,
    clean_text,
    element_text,
    extract_headings,
    extract_links,
    list_items,
    page_title,
    parse_html,
    remove_elements,
    select_first,
    strip_tags,
)

PAGE = """
<html>
  <head><title> Calculus  Volume 1 </title></head>
  <body>
    <nav><a href="/home">Home</a></nav>
    <main>
      <h1 id="top">Limits</h1>
      <p>A limit describes   behaviour
         near a point.</p>
      <h2 id="defs">Definitions</h2>
      <h3></h3>
      <a href="2-2-limit-laws">Limit laws</a>
      <a href="https://other.example.com/x">External</a>
      <a>No href</a>
    </main>
  </body>
</html>
"""


class TestText:
    def test_clean_text_collapses_whitespace(self) -> None:
        assert clean_text("  a \n\t b  ") == "a b"

    def test_clean_text_none(self) -> None:
        assert clean_text(None) == ""

    def test_strip_tags(self) -> None:
        assert strip_tags("<p>Free <b>open</b> textbooks</p>") == "Free open textbooks"

    def test_element_text_none(self) -> None:
        assert element_text(None) == ""


class TestSelection:
    def test_select_first_tries_in_order(self) -> None:
        soup = parse_html(PAGE)
        found = select_first(soup, [".missing", "main h1", "h2"])
        assert found is not None
        assert element_text(found) == "Limits"

    def test_select_first_single_selector(self) -> None:
        soup = parse_html(PAGE)
        assert select_first(soup, ".missing") is None

    def test_remove_elements(self) -> None:
        soup = parse_html(PAGE)
        remove_elements(soup, ["nav"])
        assert soup.find("nav") is None

    def test_child_list_direct_only(self) -> None:
        soup = parse_html("<li><div><ul><li>deep</li></ul></div></li>")
        item = soup.find("li")
        assert child_list(item, direct=True) is None
        assert child_list(item) is not None

    def test_list_items_are_immediate(self) -> None:
        soup = parse_html("<ul><li>a<ul><li>a1</li></ul></li><li>b</li></ul>")
        items = list_items(soup.find("ul"))
        assert len(items) == 2


class TestExtraction:
    def test_extract_links_resolves_relative(self) -> None:
        soup = parse_html(PAGE)
        links = extract_links(soup.find("main"), "https://openstax.org/books/calculus/pages/")
        assert links == [
            ("Limit laws", "https://openstax.org/books/calculus/pages/2-2-limit-laws"),
            ("External", "https://other.example.com/x"),
        ]

    def test_extract_headings_skips_empty(self) -> None:
        soup = parse_html(PAGE)
        assert extract_headings(soup) == [(1, "Limits", "top"), (2, "Definitions", "defs")]

    def test_page_title_prefers_title_tag(self) -> None:
        assert page_title(parse_html(PAGE)) == "Calculus Volume 1"

    def test_page_title_falls_back_to_h1(self) -> None:
        assert page_title(parse_html("<body><h1>Only heading</h1></body>")) == "Only heading"

    def test_page_title_empty(self) -> None:
        assert page_title(parse_html("<p>nothing</p>")) == ""
