"""Repository client backed by a local git repository.

This module provides LocalGitRepository, a RepositoryClient that drives the
``git`` executable through subprocess. Commits are built with plumbing
commands on a temporary index, so the user's index is never touched; when
the target branch is checked out the working tree is fast-forwarded.
"""

import hashlib
import logging
import os
import subprocess
import tempfile
from datetime import datetime
from typing import Dict, List, Optional

from src.core.errors import (
    CommitRejectedError,
    ExternalServiceError,
    RepositoryUnavailableError,
)

from .client import RemoteCommit, RepositoryClient

logger = logging.getLogger(__name__)

# Git command timeout in seconds
GIT_TIMEOUT = 10

RECORD_SEPARATOR = '\x1e'
FIELD_SEPARATOR = '\x1f'
NULL_SHA = '0' * 40


class LocalGitRepository(RepositoryClient):
    """RepositoryClient for a git repository on the local filesystem.

    Example:
        >>> repo = LocalGitRepository("/srv/docs-repo")
        >>> commits = repo.fetch_commits(None, "main")
        >>> content = repo.get_file_contents("docs/intro.md", commits[-1].sha)
    """

    def __init__(self, repo_path: str, author_name: str = "docsync",
                 author_email: str = "docsync@localhost"):
        """Initialize the client.

        Args:
            repo_path: Path to the repository working tree (or bare repository)
            author_name: Author/committer name of commits created by pushes
            author_email: Author/committer email of commits created by pushes
        """
        self.repo_path = os.path.abspath(repo_path)
        self.author_name = author_name
        self.author_email = author_email

    # ------------------------------------------------------------------
    # RepositoryClient
    # ------------------------------------------------------------------

    def fetch_commits(self, since: Optional[str], branch: str) -> List[RemoteCommit]:
        head = self.head_commit(branch)
        if head is None:
            return []

        revision = f"{since}..{head}" if since else head
        output = self._git([
            "-c", "core.quotePath=false",
            "log", "--reverse", "--first-parent", "-m", "--no-renames", "--name-status",
            f"--pretty=format:{RECORD_SEPARATOR}%H{FIELD_SEPARATOR}%an"
            f"{FIELD_SEPARATOR}%aI{FIELD_SEPARATOR}%s",
            revision, "--",
        ])

        commits = []
        for record in output.split(RECORD_SEPARATOR):
            if not record.strip():
                continue
            commits.append(self._parse_log_record(record))

        logger.debug(f"Fetched {len(commits)} commit(s) on {branch} after {since or 'root'}")
        return commits

    def get_file_contents(self, path: str, ref: str) -> Optional[str]:
        spec = f"{ref}:{path}"
        exists = self._run(["cat-file", "-e", spec])
        if exists.returncode != 0:
            return None
        return self._git(["show", spec])

    def create_commit(self, files: Dict[str, Optional[str]], message: str,
                      branch: str) -> str:
        parent = self.head_commit(branch)
        identity = self._identity_env()

        with tempfile.TemporaryDirectory() as tmp:
            env = dict(identity, GIT_INDEX_FILE=os.path.join(tmp, "index"))
            if parent:
                self._git(["read-tree", parent], env=env)
            removed = []
            for path, content in sorted(files.items()):
                if content is None:
                    removed.append(f"0 {NULL_SHA}\t{path}\n")
                else:
                    blob = self._git(["hash-object", "-w", "--stdin"], input=content).strip()
                    self._git(
                        ["update-index", "--add", "--cacheinfo", f"100644,{blob},{path}"],
                        env=env,
                    )
            if removed:
                # mode 0 drops the entry without touching a work tree
                self._git(["update-index", "--index-info"], input="".join(removed), env=env)
            tree = self._git(["write-tree"], env=env).strip()

        if parent and tree == self._git(["rev-parse", f"{parent}^{{tree}}"]).strip():
            logger.info(f"No file changes to commit on {branch}")
            return parent

        args = ["commit-tree", tree, "-m", message]
        if parent:
            args.extend(["-p", parent])
        sha = self._git(args, env=identity).strip()

        self._advance_branch(branch, sha, parent)
        logger.info(f"Committed {len(files)} file(s) to {branch}: {sha[:8]}")
        return sha

    def register_webhook(self, url: str, secret: Optional[str]) -> str:
        self._git(["config", "--add", "docsync.webhook", url])
        webhook_id = "local-" + hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
        logger.info(f"Registered webhook {webhook_id} for {url}")
        return webhook_id

    def head_commit(self, branch: str) -> Optional[str]:
        result = self._run(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}^{{commit}}"])
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _advance_branch(self, branch: str, sha: str, parent: Optional[str]) -> None:
        """Move branch to sha, failing if it no longer points at parent."""
        checked_out = self._run(["symbolic-ref", "--quiet", "--short", "HEAD"])
        if checked_out.returncode == 0 and checked_out.stdout.strip() == branch:
            result = self._run(["merge", "--ff-only", "--quiet", sha], env=self._identity_env())
            if result.returncode != 0:
                raise CommitRejectedError(
                    f"cannot fast-forward checked out branch {branch}: {result.stderr.strip()}"
                )
            return

        result = self._run(["update-ref", f"refs/heads/{branch}", sha, parent or ""])
        if result.returncode != 0:
            raise CommitRejectedError(
                f"branch {branch} moved while committing: {result.stderr.strip()}"
            )

    @staticmethod
    def _parse_log_record(record: str) -> RemoteCommit:
        lines = record.strip('\n').split('\n')
        sha, author, date, subject = (lines[0].split(FIELD_SEPARATOR) + ['', '', ''])[:4]
        commit = RemoteCommit(
            sha=sha,
            message=subject,
            author=author or None,
            committed_at=datetime.fromisoformat(date) if date else None,
        )
        for line in lines[1:]:
            if '\t' not in line:
                continue
            status, path = line.split('\t', 1)
            if status.startswith('A'):
                commit.added.append(path)
            elif status.startswith('D'):
                commit.removed.append(path)
            else:
                commit.modified.append(path)
        return commit

    def _identity_env(self) -> Dict[str, str]:
        return dict(
            os.environ,
            GIT_AUTHOR_NAME=self.author_name,
            GIT_AUTHOR_EMAIL=self.author_email,
            GIT_COMMITTER_NAME=self.author_name,
            GIT_COMMITTER_EMAIL=self.author_email,
        )

    def _run(self, args: List[str], input: Optional[str] = None,
             env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        if not os.path.isdir(self.repo_path):
            raise ExternalServiceError("git", f"Repository path {self.repo_path} does not exist")
        try:
            return subprocess.run(
                ["git"] + args,
                cwd=self.repo_path,
                input=input,
                env=env,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=GIT_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            raise RepositoryUnavailableError(
                f"git {args[0]} timed out after {GIT_TIMEOUT} seconds"
            )
        except FileNotFoundError:
            raise ExternalServiceError("git", "Git command not found. Please install git.")

    def _git(self, args: List[str], input: Optional[str] = None,
             env: Optional[Dict[str, str]] = None) -> str:
        result = self._run(args, input=input, env=env)
        if result.returncode != 0:
            command = next(arg for arg in args if not arg.startswith('-') and '=' not in arg)
            raise ExternalServiceError(
                "git", f"git {command} failed: {result.stderr.strip()}"
            )
        return result.stdout
