"""Slug conversion between page titles and path segments.

Slugs are the last segment of a page path and, through the git mapping, the
file name of the page. Generated slugs are lower-case; slugs taken from
existing file names keep their case.
"""

import re

from src.core.errors import ValidationError


class SlugConverter:
    """Converts page titles to slugs and back.

    Conversion rules for generated slugs:
    - Case is lowered
    - Spaces, colons and special characters → hyphens (-)
    - Characters outside [a-z0-9._-] are dropped
    - Multiple consecutive hyphens → collapsed to one hyphen
    - Leading/trailing hyphens and dots → trimmed

    Examples:
        - "Getting Started" → "getting-started"
        - "API Reference: Auth" → "api-reference-auth"
        - "Q&A Session" → "q-a-session"
    """

    VALID_SLUG = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9._-]*$')

    MAX_SLUG_LENGTH = 255

    @staticmethod
    def title_to_slug(title: str) -> str:
        """Convert a page title to a slug.

        Args:
            title: Page title

        Returns:
            Lower-case slug

        Raises:
            ValidationError: If nothing usable remains of the title

        Examples:
            >>> SlugConverter.title_to_slug("Getting Started")
            'getting-started'
        """
        slug = title.strip().lower()
        slug = re.sub(r'[\s:/\\?%*|"<>&+]', '-', slug)
        slug = re.sub(r'[^a-z0-9._-]', '', slug)
        slug = re.sub(r'-{2,}', '-', slug)
        slug = slug.strip('-.')

        if not slug:
            raise ValidationError(
                f"Cannot derive a slug from title '{title}'", 'slug'
            )
        return slug[:SlugConverter.MAX_SLUG_LENGTH]

    @staticmethod
    def slug_to_title(slug: str) -> str:
        """Convert a slug back to a title (best effort).

        Note: This is a lossy conversion - punctuation and original case
        cannot be recovered.

        Examples:
            >>> SlugConverter.slug_to_title("getting-started")
            'Getting Started'
        """
        words = [word for word in re.split(r'[-_]+', slug) if word]
        return ' '.join(word[:1].upper() + word[1:] for word in words)

    @classmethod
    def validate(cls, slug: str) -> str:
        """Validate a slug supplied by a caller or taken from a file name.

        Raises:
            ValidationError: If the slug is empty, too long or contains
                characters that cannot appear in a path segment
        """
        if not slug or not slug.strip():
            raise ValidationError("Slug cannot be empty", 'slug')
        if len(slug) > cls.MAX_SLUG_LENGTH:
            raise ValidationError(
                f"Slug exceeds {cls.MAX_SLUG_LENGTH} characters", 'slug'
            )
        if not cls.VALID_SLUG.match(slug):
            raise ValidationError(
                f"Slug '{slug}' may only contain letters, digits, '.', '_' and '-'",
                'slug'
            )
        return slug
