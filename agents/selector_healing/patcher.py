"""Artifact Patcher – rewrites one locator occurrence in a page object.

The page object is found through the failing test's named imports
(``import { LoginPage } from '../pages/LoginPage'``).  If none of the
imported modules contains the locator, the test file itself is tried.
At most one site is rewritten per call, and writes are atomic.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from agents.errors import PatchError
from shared.schemas import LocatorCorrection

logger = logging.getLogger(__name__)

_NAMED_IMPORT_RE = re.compile(
    r"""import\s+(?:type\s+)?\{\s*[\w\s,]+?\s*\}\s+from\s+(['"])([^'"]+)\1"""
)
_MODULE_SUFFIXES = (".ts", ".tsx", ".js", ".mjs")


@dataclass(frozen=True)
class PatchResult:
    changed: bool
    file: str | None = None  # checkout-relative path of the rewritten file


def _patterns(locator: str) -> list[re.Pattern]:
    escaped = re.escape(locator)
    return [
        # '#old' / "#old" / `#old`, same quote on both sides
        re.compile(r"""(?P<open>(?P<q>['"`]))""" + escaped + r"(?P<close>(?P=q))"),
        # (#old)
        re.compile(r"(?P<open>\()" + escaped + r"(?P<close>\))"),
        # key: '#old'
        re.compile(r"""(?P<open>:\s*(?P<q>['"`]))""" + escaped + r"(?P<close>(?P=q))"),
    ]


def replace_locator(text: str, original: str, replacement: str) -> tuple[str, bool]:
    """Replace the first quoted occurrence of *original*.

    Patterns are tried in order; the first one that matches wins and
    rewrites exactly one site.
    """
    if not original or original == replacement:
        return text, False
    for pattern in _patterns(original):
        new_text, count = pattern.subn(
            lambda m: f"{m.group('open')}{replacement}{m.group('close')}", text, count=1
        )
        if count:
            return new_text, True
    return text, False


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _resolve_module(test_dir: PurePosixPath, spec: str) -> list[PurePosixPath]:
    base = test_dir / spec
    if base.suffix in _MODULE_SUFFIXES:
        return [base]
    return [base.with_name(base.name + s) for s in _MODULE_SUFFIXES]


def _normalise(path: PurePosixPath) -> PurePosixPath | None:
    parts: list[str] = []
    for part in path.parts:
        if part == "..":
            if not parts:
                return None
            parts.pop()
        elif part != ".":
            parts.append(part)
    return PurePosixPath(*parts) if parts else None


class ArtifactPatcher:
    """Applies a ``LocatorCorrection`` to the files of a checkout."""

    def __init__(self, checkout: str | Path):
        self.checkout = Path(checkout)

    def page_object_candidates(self, test_file: str, test_source: str) -> list[str]:
        """Checkout-relative page-object paths imported by *test_file*."""
        test_dir = PurePosixPath(test_file.replace("\\", "/")).parent
        found: list[str] = []
        for match in _NAMED_IMPORT_RE.finditer(test_source):
            spec = match.group(2)
            if not spec.startswith("."):
                continue  # package import
            for candidate in _resolve_module(test_dir, spec):
                rel = _normalise(candidate)
                if rel is None:
                    continue
                if (self.checkout / rel).is_file() and str(rel) not in found:
                    found.append(str(rel))
                    break
        return found

    def apply(self, test_file: str, correction: LocatorCorrection) -> PatchResult:
        """Rewrite one occurrence of the original locator.

        Raises:
            PatchError: the test or page-object file could not be read/written.
        """
        test_path = self.checkout / test_file
        try:
            test_source = test_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PatchError(f"Cannot read test file {test_file}: {exc}") from exc

        candidates = self.page_object_candidates(test_file, test_source)
        candidates.append(test_file)

        for rel in candidates:
            if self._patch_file(rel, correction):
                return PatchResult(changed=True, file=rel)

        logger.info(
            "[Patcher] '%s' not found in %s; nothing changed",
            correction.original_locator, ", ".join(candidates),
        )
        return PatchResult(changed=False)

    def _patch_file(self, rel: str, correction: LocatorCorrection) -> bool:
        path = self.checkout / rel
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PatchError(f"Cannot read {rel}: {exc}") from exc

        new_text, changed = replace_locator(
            text, correction.original_locator, correction.suggested_locator
        )
        if not changed:
            return False

        try:
            _atomic_write(path, new_text)
        except OSError as exc:
            raise PatchError(f"Cannot write {rel}: {exc}") from exc

        logger.info(
            "[Patcher] %s: %s -> %s",
            rel, correction.original_locator, correction.suggested_locator,
        )
        return True
