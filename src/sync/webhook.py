"""Push webhook payloads: signature verification and parsing.

Payload shape (the subset every hosting service's push event provides):

    {
      "ref": "refs/heads/main",
      "after": "<head sha>",
      "commits": [
        {"id": "<sha>", "message": "...", "author": "...",
         "added": [...], "modified": [...], "removed": [...]}
      ]
    }

Signatures use the ``sha256=<hex>`` HMAC-SHA256 format over the raw body.
Payloads passed as a mapping are signed over their compact, key-sorted JSON
encoding.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from src.core.errors import ForbiddenError, ValidationError
from src.repository.client import RemoteCommit

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"
SIGNATURE_PREFIX = "sha256="

Payload = Union[bytes, str, Dict[str, Any]]


@dataclass
class WebhookEvent:
    """A parsed push event.

    Attributes:
        ref: Full ref name that was pushed
        after: Head commit after the push
        commits: Pushed commits, oldest first
    """
    ref: str
    after: Optional[str] = None
    commits: List[RemoteCommit] = field(default_factory=list)

    @property
    def branch(self) -> str:
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX):]
        return self.ref

    @property
    def commit_shas(self) -> List[str]:
        return [commit.sha for commit in self.commits]


def payload_bytes(payload: Payload) -> bytes:
    """Return the bytes a signature of payload is computed over."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode('utf-8')
    return json.dumps(payload, sort_keys=True, separators=(',', ':')).encode('utf-8')


def sign_payload(secret: str, payload: Payload) -> str:
    """Compute the sha256=<hex> signature of payload."""
    digest = hmac.new(secret.encode('utf-8'), payload_bytes(payload), hashlib.sha256)
    return SIGNATURE_PREFIX + digest.hexdigest()


def verify_signature(secret: Optional[str], payload: Payload,
                     signature: Optional[str]) -> None:
    """Check a webhook signature.

    Without a secret nothing is verified. With a secret the signature is
    mandatory.

    Raises:
        ForbiddenError: If the signature is missing or does not match
    """
    if not secret:
        return
    if not signature:
        raise ForbiddenError("Webhook signature is required")
    if not hmac.compare_digest(sign_payload(secret, payload), signature.strip()):
        logger.warning("Rejected webhook with an invalid signature")
        raise ForbiddenError("Webhook signature does not match")


def parse_payload(payload: Payload) -> WebhookEvent:
    """Parse a push webhook payload.

    Raises:
        ValidationError: If the payload is not a push event
    """
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f"Webhook payload is not valid JSON: {e}", 'payload')

    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be an object", 'payload')

    ref = payload.get('ref')
    if not ref or not isinstance(ref, str):
        raise ValidationError("Webhook payload has no ref", 'ref')

    raw_commits = payload.get('commits') or []
    if not isinstance(raw_commits, list):
        raise ValidationError("Field 'commits' must be a list", 'commits')

    commits = []
    for index, raw in enumerate(raw_commits):
        if not isinstance(raw, dict) or not raw.get('id'):
            raise ValidationError(f"Commit {index} has no id", f'commits[{index}]')
        commits.append(RemoteCommit(
            sha=str(raw['id']),
            message=str(raw.get('message') or '').split('\n', 1)[0],
            author=_author_name(raw.get('author')),
            added=_paths(raw, 'added', index),
            modified=_paths(raw, 'modified', index),
            removed=_paths(raw, 'removed', index),
        ))

    return WebhookEvent(ref=ref, after=payload.get('after'), commits=commits)


def _paths(raw: Dict[str, Any], key: str, index: int) -> List[str]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise ValidationError(f"Field '{key}' must be a list", f'commits[{index}].{key}')
    return [str(path) for path in value]


def _author_name(author: Any) -> Optional[str]:
    if isinstance(author, dict):
        return author.get('name') or author.get('username')
    return str(author) if author else None
