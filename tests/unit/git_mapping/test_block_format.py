"""Unit tests for the page body serializer and parser."""

import pytest

from src.content_tree.blocks import BlockNode, tree_signature
from src.content_tree.models import BlockType
from src.core.errors import ValidationError
from src.git_mapping.block_parser import BlockParser
from src.git_mapping.block_serializer import BlockSerializer
from src.git_mapping.markdown_converter import html_to_markdown
from tests.helpers.builders import heading, paragraph


def round_trip(nodes, resolver=None):
    body = BlockSerializer(resolver).serialize(nodes)
    return body, BlockParser(resolver).parse(body)


class TestNativeForms:
    """Blocks with a Markdown form are written natively."""

    def test_heading_and_paragraph(self):
        body, parsed = round_trip([heading("Title"), paragraph("Hello\nworld")])
        assert body == "# Title\n\nHello\nworld"
        assert tree_signature(parsed) == tree_signature([heading("Title"), paragraph("Hello\nworld")])

    def test_code_with_language(self):
        code = BlockNode.text(BlockType.CODE_BLOCK, "print(1)\n\nprint(2)")
        code.language = "python"
        body, parsed = round_trip([code])
        assert body == "```python\nprint(1)\n\nprint(2)\n```"
        assert parsed[0].language == "python"
        assert parsed[0].content == {'text': "print(1)\n\nprint(2)"}

    def test_table(self):
        table = BlockNode(block_type=BlockType.TABLE,
                          content={'rows': [["a", "b|c"], ["1", "2"]]})
        body, parsed = round_trip([table])
        assert body.splitlines()[1] == "| --- | --- |"
        assert parsed[0].content == table.content

    def test_divider_image_quote_math(self):
        nodes = [
            BlockNode(block_type=BlockType.DIVIDER),
            BlockNode(block_type=BlockType.IMAGE, content={'url': 'img/a.png', 'alt': 'A'}),
            BlockNode.text(BlockType.BLOCKQUOTE, "quoted\n\nstill quoted"),
            BlockNode.text(BlockType.MATH, "e = mc^2"),
        ]
        body, parsed = round_trip(nodes)
        assert "***" in body and "![A](img/a.png)" in body
        assert tree_signature(parsed) == tree_signature(nodes)


class TestEscaping:

    @pytest.mark.parametrize("text", [
        "# not heading",
        "> not a quote",
        "```",
        "---",
        "| not | a table |",
        "<b>not html</b>",
        "\\# already escaped looking",
    ])
    def test_construct_lines_stay_paragraphs(self, text):
        body, parsed = round_trip([paragraph(text)])
        assert body.startswith("\\")
        assert tree_signature(parsed) == tree_signature([paragraph(text)])


class TestContainers:

    def test_toggle_with_children(self):
        toggle = BlockNode(block_type=BlockType.TOGGLE, content={'title': 'More'},
                           children=[paragraph("inside"), heading("Deep", 2)])
        body, parsed = round_trip([toggle, paragraph("after")])
        assert body.startswith('<div data-block-type="toggle"')
        assert tree_signature(parsed) == tree_signature([toggle, paragraph("after")])

    def test_empty_paragraph_uses_container(self):
        body, parsed = round_trip([paragraph("")])
        assert body.startswith('<div data-block-type="paragraph"')
        assert parsed[0].content == {'text': ''}

    def test_reusable_reference_writes_fallback(self):
        shared = paragraph("shared text")
        resolver = {"r1": shared}.get
        ref = BlockNode(block_type=BlockType.REUSABLE_BLOCK, reusable_block_id="r1")

        body = BlockSerializer(resolver).serialize([ref])

        assert "shared text" in body
        assert BlockParser(resolver).parse(body)[0].children == []
        assert len(BlockParser().parse(body)[0].children) == 1

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            BlockParser().parse('<div data-block-type="bogus" data-content="{}">\n\n</div>')

    def test_invalid_payload(self):
        with pytest.raises(ValidationError):
            BlockParser().parse('<div data-block-type="toggle" data-content="{oops">\n\n</div>')

    def test_unclosed_container_closed_at_end(self):
        parsed = BlockParser().parse('<div data-block-type="toggle" data-content="{}">\n\ninside')
        assert parsed[0].children[0].content == {'text': 'inside'}


class TestHtmlFragments:

    def test_heading_converted(self):
        parsed = BlockParser().parse("<h2>Setup</h2>")
        assert parsed[0].block_type == BlockType.HEADING_2
        assert parsed[0].content == {'text': 'Setup'}

    def test_inline_markup_converted(self):
        assert html_to_markdown("<p>Hello <strong>world</strong></p>") == "Hello **world**"

    def test_blank_fragment(self):
        assert html_to_markdown("   ") == ""
