"""Tests for turning fetched pages into documents."""

from unittest.mock import Mock

import pytest

from docs_crawler.extraction.extractor import ExtractedContent
from docs_crawler.extraction.handoff import ContentHandoff, document_id, strip_tags
from docs_crawler.fetching import FetchedPage
from docs_crawler.models import QueueItem

URL = "https://docs.example.com/guide"


def fetched(raw_content, title="Guide", text_content=None, final_url=URL):
    return FetchedPage(
        url=URL,
        final_url=final_url,
        title=title,
        raw_content=raw_content,
        status_code=200,
        text_content=text_content
    )


ITEM = QueueItem(url=URL, depth=2, parent_url="https://docs.example.com/")


def test_strip_tags():
    html = "<p>Hello <b>docs</b></p><script>var x = '<p>';</script><style>p {}</style>\n<div>world</div>"
    assert strip_tags(html) == "Hello docs world"
    assert strip_tags("") == ""


def test_document_id_is_stable():
    assert document_id(URL) == document_id(URL)
    assert document_id(URL) != document_id(URL + "/")
    assert document_id(URL).startswith("doc_")
    assert len(document_id(URL)) == 20


class TestContentHandoff:

    def test_uses_extracted_content(self):
        extractor = Mock()
        extractor.extract.return_value = ExtractedContent(
            text="Main content",
            title="Extracted title",
            description="Summary",
            headings=[{"text": "Extracted title", "level": 1}],
            code_blocks=[]
        )
        handoff = ContentHandoff(extractor, tags=["docs"])

        document = handoff.build_document(
            fetched("<main>Main content</main>", final_url=URL + "/"), ITEM, "docs"
        )

        extractor.extract.assert_called_once_with("<main>Main content</main>", URL + "/")
        assert document.id == document_id(URL)
        assert document.url == URL
        assert document.title == "Extracted title"
        assert document.content == "Main content"
        assert document.text_content == "Main content"
        assert document.source_id == "docs"
        assert document.tags == ["docs"]
        assert document.metadata["depth"] == 2
        assert document.metadata["parent_url"] == "https://docs.example.com/"
        assert document.metadata["final_url"] == URL + "/"
        assert document.metadata["description"] == "Summary"
        assert document.metadata["extracted"] is True

    def test_short_page_falls_back_to_page_text(self):
        extractor = Mock()
        extractor.extract.return_value = None

        document = ContentHandoff(extractor).build_document(
            fetched("<p>Hi</p>", text_content="Rendered hi"), ITEM, "docs"
        )

        assert document.content == "Rendered hi"
        assert document.title == "Guide"
        assert document.metadata["extracted"] is False
        assert "headings" not in document.metadata

    def test_extractor_errors_fall_back_to_stripped_html(self):
        extractor = Mock()
        extractor.extract.side_effect = ValueError("parser exploded")

        document = ContentHandoff(extractor).build_document(
            fetched("<h1>Guide</h1><p>Body</p>", title=""), ITEM, "docs"
        )

        assert document.content == "Guide Body"
        assert document.title == URL
        assert document.metadata["extracted"] is False

    @pytest.mark.parametrize("raw_content", ["", "<html></html>"])
    def test_empty_pages_still_produce_documents(self, raw_content):
        document = ContentHandoff().build_document(fetched(raw_content), ITEM, "docs")

        assert document.url == URL
        assert document.content == ""
