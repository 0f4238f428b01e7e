"""GitHub service – clone the test repo, publish branches and pull requests.

Uses PyGithub for the GitHub API and subprocess (git CLI) for local
repository operations.  Every method is blocking; async callers wrap
them in ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from github import Github, GithubException

from app.config import settings
from shared.schemas import AppliedCorrection, SourceFile

logger = logging.getLogger(__name__)


# ── Branch-name helpers ──────────────────────────────────────────────

def build_branch_name(prefix: str, issue_key: str, label: str, now_ms: int | None = None) -> str:
    """Build a collision-free branch name.

    Examples:
        ("feature", "SCRUM-6", "tests")     → "feature/SCRUM-6-tests-1718000000000"
        ("fix", "SCRUM-6", "selectors")     → "fix/SCRUM-6-selectors-1718000000000"
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}/{issue_key}-{label}-{now_ms}"


# ── Git CLI wrapper ──────────────────────────────────────────────────

def _run_git(args: list[str], cwd: str | Path) -> subprocess.CompletedProcess:
    """Run a git command and return the result."""
    cmd = ["git"] + args
    logger.debug("git %s  (cwd=%s)", " ".join(_redact(a) for a in args), cwd)
    result = subprocess.run(
        cmd,
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=120,
    )
    if result.returncode != 0:
        logger.error("git %s failed: %s", args[0], result.stderr.strip())
        raise GitCommandError(cmd, result.returncode, result.stderr.strip())
    return result


def _redact(arg: str) -> str:
    if "@" in arg and arg.startswith("https://"):
        return "https://***@" + arg.split("@", 1)[1]
    return arg


class GitCommandError(Exception):
    """Raised when a git subprocess exits with a non-zero code."""

    def __init__(self, cmd: list[str], code: int, stderr: str):
        self.cmd = cmd
        self.code = code
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(_redact(a) for a in cmd[1:])} failed (exit {code}): {stderr}"
        )


# ── GitHub service class ─────────────────────────────────────────────

class GitHubService:
    """Clone, branch, commit, push and open pull requests on the test repo."""

    def __init__(
        self,
        repo_url: str | None = None,
        token: str | None = None,
        username: str | None = None,
        author_name: str | None = None,
        author_email: str | None = None,
    ):
        self.repo_url = repo_url or settings.TARGET_REPO_URL
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.username = username if username is not None else settings.GITHUB_USERNAME
        self.author_name = author_name or settings.GIT_AUTHOR_NAME
        self.author_email = author_email or settings.GIT_AUTHOR_EMAIL
        self._gh: Github | None = None

    # -- PyGithub client (lazy) ----------------------------------------

    @property
    def gh(self) -> Github:
        if self._gh is None:
            if not self.token:
                raise ValueError("GITHUB_TOKEN is not set")
            self._gh = Github(self.token)
        return self._gh

    # -- Clone ----------------------------------------------------------

    def clone(self, dest: str | Path, branch: str | None = None) -> Path:
        """Clone the target repo into *dest* (optionally a specific branch)."""
        if not self.repo_url:
            raise ValueError("TARGET_REPO_URL is not set")
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone"]
        if branch:
            args += ["--branch", branch]
        args += [self._authenticated_url(self.repo_url), dest.name]

        logger.info(
            "[GitHubService] Cloning repo | url=%s | branch=%s | dest=%s",
            self.repo_url, branch or "(default)", dest,
        )
        _run_git(args, cwd=dest.parent)
        return dest

    def configure_identity(self, repo_dir: str | Path) -> None:
        _run_git(["config", "user.name", self.author_name], cwd=repo_dir)
        _run_git(["config", "user.email", self.author_email], cwd=repo_dir)

    def prepare_checkout(self, repo_dir: str | Path, branch: str | None = None) -> Path:
        """Fresh clone with the commit identity configured."""
        repo_dir = self.clone(repo_dir, branch=branch)
        self.configure_identity(repo_dir)
        return repo_dir

    # -- Branch / files / commit / push --------------------------------

    def create_branch(self, repo_dir: str | Path, branch: str) -> str:
        logger.info("[GitHubService] Creating branch '%s' in %s", branch, repo_dir)
        _run_git(["checkout", "-b", branch], cwd=repo_dir)
        return branch

    @staticmethod
    def write_files(repo_dir: str | Path, files: list[SourceFile]) -> list[str]:
        root = Path(repo_dir)
        written: list[str] = []
        for f in files:
            target = root / f.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f.content, encoding="utf-8")
            written.append(f.path)
            logger.info("[GitHubService]   wrote %s", f.path)
        return written

    def commit(
        self,
        repo_dir: str | Path,
        message: str,
        paths: list[str] | None = None,
    ) -> str | None:
        """Stage *paths* (or everything) and commit.

        Returns the short commit SHA, or None when there was nothing to commit.
        """
        _run_git(["add", "--"] + (paths or ["."]), cwd=repo_dir)
        staged = _run_git(["diff", "--cached", "--name-only"], cwd=repo_dir).stdout.strip()
        if not staged:
            logger.info("[GitHubService] Nothing to commit in %s", repo_dir)
            return None

        _run_git(["commit", "-m", message], cwd=repo_dir)
        sha = _run_git(["rev-parse", "--short", "HEAD"], cwd=repo_dir).stdout.strip()
        logger.info("Committed %s: %s", sha, message.splitlines()[0])
        return sha

    def push(self, repo_dir: str | Path, branch: str) -> None:
        """Push *branch* to origin."""
        _run_git(["push", "-u", "origin", branch], cwd=repo_dir)
        logger.info("Pushed branch %s", branch)

    # -- Pull Request ---------------------------------------------------

    def create_pull_request(
        self,
        branch: str,
        title: str,
        body: str,
        max_retries: int = 3,
    ) -> str | None:
        """Open a PR from *branch* into the default branch.

        Returns the PR URL, or None when every attempt failed.
        """
        owner_repo = self._extract_owner_repo(self.repo_url)
        try:
            target_repo = self.gh.get_repo(owner_repo)
        except GithubException as exc:
            logger.error("[PR] Cannot access %s: %s", owner_repo, exc)
            return None
        base = target_repo.default_branch

        try:
            for pr in target_repo.get_pulls(state="open", head=f"{owner_repo.split('/')[0]}:{branch}"):
                logger.info("PR already exists: #%d %s", pr.number, pr.html_url)
                return pr.html_url
        except GithubException as exc:
            logger.warning("Error checking existing PRs: %s", exc)

        last_error: GithubException | None = None
        for attempt in range(1, max_retries + 1):
            try:
                pr = target_repo.create_pull(title=title, body=body, head=branch, base=base)
                logger.info("Created PR #%d: %s (attempt %d)", pr.number, pr.html_url, attempt)
                return pr.html_url
            except GithubException as exc:
                last_error = exc
                logger.warning(
                    "PR creation attempt %d/%d failed: %s", attempt, max_retries, exc,
                )
                if attempt < max_retries:
                    time.sleep(attempt * 5)

        logger.error("[PR] All %d attempts failed. Last error: %s", max_retries, last_error)
        return None

    # -- Publishing workflows -------------------------------------------

    def publish_tests(
        self, repo_dir: str | Path, issue_key: str, files: list[SourceFile]
    ) -> dict:
        """Clone → branch → write generated files → commit → push → PR."""
        repo_dir = self.prepare_checkout(repo_dir)
        branch = self.create_branch(
            repo_dir, build_branch_name("feature", issue_key, "tests")
        )
        paths = self.write_files(repo_dir, files)
        self.commit(repo_dir, f"Add automated tests for {issue_key}", paths)
        self.push(repo_dir, branch)

        pr_url = self.create_pull_request(
            branch,
            title=f"feat: Automated tests for {issue_key}",
            body=(
                f"This PR adds automated Playwright tests for issue {issue_key}.\n\n"
                f"**Files:**\n" + "\n".join(f"- `{p}`" for p in paths)
            ),
        )
        return {"branch": branch, "pr_url": pr_url}

    def publish_corrections(
        self,
        repo_dir: str | Path,
        issue_key: str,
        corrections: list[AppliedCorrection],
    ) -> str | None:
        """Commit corrected page objects on a fix branch and open a PR."""
        if not corrections:
            return None

        branch = self.create_branch(
            repo_dir, build_branch_name("fix", issue_key, "selectors")
        )
        listing = "\n".join(
            f"- {c.original_locator} → {c.new_locator}" for c in corrections
        )
        sha = self.commit(
            repo_dir,
            f"fix({issue_key}): Auto-correct failed selectors\n\n"
            f"Corrected selectors:\n{listing}",
            sorted({c.file for c in corrections}),
        )
        if sha is None:
            return None
        self.push(repo_dir, branch)

        return self.create_pull_request(
            branch,
            title=f"fix: Auto-corrected selectors for {issue_key}",
            body=(
                f"Automatically corrected selectors for failed tests in {issue_key}.\n\n"
                f"{listing}\n"
            ),
        )

    # -- Internal -------------------------------------------------------

    @staticmethod
    def _extract_owner_repo(url: str) -> str:
        """Extract 'owner/repo' from a GitHub URL."""
        url = url.rstrip("/")
        if url.endswith(".git"):
            url = url[:-4]
        parts = url.split("github.com/")
        if len(parts) == 2:
            return parts[1]
        raise ValueError(f"Cannot extract owner/repo from: {url}")

    def _authenticated_url(self, url: str) -> str:
        """Inject credentials into an HTTPS URL for private repos."""
        if not self.token or not url.startswith("https://"):
            return url
        creds = f"{self.username}:{self.token}" if self.username else self.token
        return "https://" + creds + "@" + url[len("https://"):]
