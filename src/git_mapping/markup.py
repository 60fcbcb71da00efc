"""Line-level syntax shared by the block serializer and parser.

Page file bodies use a small Markdown dialect. Each native form below maps
to exactly one block type; everything else is wrapped in a container tag:

    <div data-block-type="toggle" data-content="{&quot;title&quot;: &quot;More&quot;}">

    ...children...

    </div>
"""

import re

# Lines that would start another construct when they appear in a paragraph
CONSTRUCT_PATTERN = re.compile(
    r'^(#{1,6}\s|>|```|\$\$|<[A-Za-z/!]|!\[|\||(\*\*\*|---|___)\s*$)'
)

HEADING_PATTERN = re.compile(r'^(#{1,6})\s(.*)$')
FENCE_PATTERN = re.compile(r'^```\s*([\w+#.-]*)\s*$')
LANGUAGE_PATTERN = re.compile(r'^[\w+#.-]+$')
IMAGE_PATTERN = re.compile(r'^!\[([^\]\n]*)\]\(([^)\s]*)\)\s*$')
DIVIDER_PATTERN = re.compile(r'^(\*\*\*|---|___)\s*$')
TABLE_SEPARATOR_PATTERN = re.compile(r'^\|(\s*:?-+:?\s*\|)+\s*$')
CELL_SPLIT_PATTERN = re.compile(r'(?<!\\)\|')
CONTAINER_OPEN_PATTERN = re.compile(r'^<div\s+data-block-type="[^"]*"[^>]*>\s*$')
CONTAINER_CLOSE_PATTERN = re.compile(r'^</div>\s*$')
HTML_START_PATTERN = re.compile(r'^<[A-Za-z!/]')
MATH_FENCE = '$$'
CODE_FENCE = '```'


def needs_escape(line: str) -> bool:
    """True if a paragraph line must be written with a leading backslash.

    A line needs escaping when it starts a construct, or when it already
    looks like an escaped construct (any number of leading backslashes).
    """
    return bool(CONSTRUCT_PATTERN.match(line.lstrip('\\')))


def escape_line(line: str) -> str:
    return '\\' + line if needs_escape(line) else line


def unescape_line(line: str) -> str:
    if line.startswith('\\') and needs_escape(line[1:]):
        return line[1:]
    return line


def split_table_row(line: str) -> list:
    """Split a pipe table row into unescaped, stripped cells."""
    inner = line.strip()
    if inner.startswith('|'):
        inner = inner[1:]
    if inner.endswith('|') and not inner.endswith('\\|'):
        inner = inner[:-1]
    return [cell.strip().replace('\\|', '|') for cell in CELL_SPLIT_PATTERN.split(inner)]


def format_table_row(cells) -> str:
    return '| ' + ' | '.join(cell.replace('|', '\\|') for cell in cells) + ' |'
