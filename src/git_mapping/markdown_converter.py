"""HTML to Markdown conversion for hand-written page files.

People editing page files in the repository sometimes paste raw HTML
fragments. Those fragments are converted with markdownify into Markdown the
block parser understands (ATX headings, pipe tables, fenced code).
"""

from markdownify import MarkdownConverter as BaseMarkdownConverter


class _CustomMarkdownConverter(BaseMarkdownConverter):
    """Custom markdownify converter producing the page file dialect."""

    def __init__(self, **options):
        options.setdefault('heading_style', 'atx')
        options.setdefault('bullets', '-')
        options.setdefault('strong_em_symbol', '*')
        options.setdefault('code_language', '')
        super().__init__(**options)

    def _is_in_table_cell(self, parent_tags):
        return 'td' in parent_tags or 'th' in parent_tags

    def convert_p(self, el, text, parent_tags):
        """Convert paragraph, keeping multi-paragraph table cells on one line."""
        text = text.strip()
        if not text:
            return ''

        if self._is_in_table_cell(parent_tags):
            return text + '\n'

        if '_inline' in parent_tags:
            return ' ' + text + ' '
        return '\n\n%s\n\n' % text

    def _convert_cell(self, el, text):
        colspan = 1
        if 'colspan' in el.attrs and el['colspan'].isdigit():
            colspan = max(1, min(1000, int(el['colspan'])))
        cell_text = text.strip().replace('\n', '<br>').replace('|', '\\|')
        while '<br><br>' in cell_text:
            cell_text = cell_text.replace('<br><br>', '<br>')
        while cell_text.endswith('<br>'):
            cell_text = cell_text.removesuffix('<br>')
        return ' ' + cell_text + ' |' * colspan

    def convert_td(self, el, text, parent_tags):
        return self._convert_cell(el, text)

    def convert_th(self, el, text, parent_tags):
        return self._convert_cell(el, text)

    def convert_br(self, el, text, parent_tags):
        """Convert <br> tags, preserving them in table cells."""
        if self._is_in_table_cell(parent_tags):
            return '<br>'
        if '_inline' in parent_tags:
            return ' '
        if self.options['newline_style'].lower() == 'backslash':
            return '\\\n'
        return '  \n'


def html_to_markdown(html: str) -> str:
    """Convert an HTML fragment to Markdown.

    Args:
        html: Raw HTML fragment

    Returns:
        Markdown text with surrounding whitespace stripped
    """
    if not html or not html.strip():
        return ""
    return _CustomMarkdownConverter().convert(html).strip()
