"""YAML frontmatter parsing and generation for page files.

Every page file starts with a YAML frontmatter block holding the page title
and published flag:

    ---
    title: Getting Started
    published: false
    ---

Keys other than ``title`` and ``published`` belong to whoever wrote the file;
they are returned as extras on parse and written back unchanged on generate.
"""

import re
from typing import Any, Dict, Optional, Tuple

import yaml

from src.core.errors import FrontmatterError


class FrontmatterHandler:
    """Splits and generates YAML frontmatter.

    Frontmatter format:
        - title: Page title (optional, derived from the body or file name)
        - published: Published flag (optional, defaults to false)
        - any other keys: preserved as extras
    """

    # YAML frontmatter between --- delimiters, each on a line of its own
    FRONTMATTER_PATTERN = re.compile(
        r'\A---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|\Z)',
        re.DOTALL
    )

    # Keys owned by the page model; everything else is an extra
    MANAGED_KEYS = ('title', 'published')

    # Maximum allowed depth for YAML structures to prevent DoS attacks
    MAX_YAML_DEPTH = 10

    @classmethod
    def _validate_yaml_depth(cls, obj, current_depth: int = 0, max_depth: int = MAX_YAML_DEPTH) -> None:
        """Validate that YAML structure depth doesn't exceed maximum.

        Raises:
            FrontmatterError: If depth exceeds maximum
        """
        if current_depth > max_depth:
            raise FrontmatterError(
                "<yaml>",
                f"YAML structure exceeds maximum depth of {max_depth}"
            )

        if isinstance(obj, dict):
            for value in obj.values():
                cls._validate_yaml_depth(value, current_depth + 1, max_depth)
        elif isinstance(obj, list):
            for item in obj:
                cls._validate_yaml_depth(item, current_depth + 1, max_depth)

    @classmethod
    def split(cls, file_path: str, content: str) -> Tuple[Dict[str, Any], str]:
        """Split file content into its frontmatter dict and body.

        Files without frontmatter return an empty dict and the full content.

        Args:
            file_path: Path to the file (for error messages)
            content: Full file content

        Returns:
            Tuple of (frontmatter, body)

        Raises:
            FrontmatterError: If frontmatter is malformed or has invalid YAML
        """
        content = content.replace('\r\n', '\n')
        match = cls.FRONTMATTER_PATTERN.match(content)
        if not match:
            return {}, content

        try:
            frontmatter = yaml.safe_load(match.group(1) or '')
        except yaml.YAMLError as e:
            raise FrontmatterError(file_path, f"Invalid YAML syntax: {str(e)}")

        if frontmatter is None:
            frontmatter = {}
        if not isinstance(frontmatter, dict):
            raise FrontmatterError(
                file_path,
                f"Frontmatter must be a YAML dictionary, got {type(frontmatter).__name__}"
            )

        try:
            cls._validate_yaml_depth(frontmatter)
        except FrontmatterError as e:
            raise FrontmatterError(file_path, e.message)

        return frontmatter, content[match.end():]

    @classmethod
    def read_managed(cls, file_path: str, frontmatter: Dict[str, Any]
                     ) -> Tuple[Optional[str], bool, Dict[str, Any]]:
        """Extract (title, published, extras) from a frontmatter dict.

        Raises:
            FrontmatterError: If title or published have the wrong type
        """
        title = frontmatter.get('title')
        if title is not None:
            if not isinstance(title, (str, int, float)):
                raise FrontmatterError(file_path, "Field 'title' must be a string")
            title = str(title).strip() or None

        published = frontmatter.get('published', False)
        if published is None:
            published = False
        if not isinstance(published, bool):
            raise FrontmatterError(file_path, "Field 'published' must be true or false")

        extras = {
            key: value for key, value in frontmatter.items()
            if key not in cls.MANAGED_KEYS
        }
        return title, published, extras

    @classmethod
    def generate(cls, title: str, published: bool, body: str,
                 extras: Optional[Dict[str, Any]] = None) -> str:
        """Generate file content with frontmatter.

        Managed keys come first, extras follow in their original order.

        Args:
            title: Page title
            published: Published flag
            body: Markdown body (without frontmatter)
            extras: Additional frontmatter keys to preserve

        Returns:
            Full file content
        """
        frontmatter = {'title': title, 'published': bool(published)}
        for key, value in (extras or {}).items():
            if key not in cls.MANAGED_KEYS:
                frontmatter[str(key)] = value

        yaml_str = yaml.safe_dump(
            frontmatter,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        if not body:
            return f"---\n{yaml_str}---\n"
        return f"---\n{yaml_str}---\n\n{body}\n"
