"""
watchrun Path Filters.

Decides which changed paths are relevant enough to trigger a restart.
Requires Python 3.11+.
"""

import fnmatch
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class _IgnoreRule:
    regex: re.Pattern[str]
    negated: bool
    dir_only: bool


def _translate(pattern: str) -> str:
    """Translate a gitignore glob into a regular expression body."""
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("/**", i) and i + 3 == n:
            out.append("/.*")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
                i += 1
            else:
                body = pattern[i + 1 : end]
                negated = body.startswith("!")
                if negated:
                    body = body[1:]
                # Ranges keep their "-"; everything else is literal
                body = "".join(ch if ch == "-" else re.escape(ch) for ch in body)
                out.append(f"[{'^' if negated else ''}{body}]")
                i = end + 1
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


class GitignoreRules:
    """
    A parsed ``.gitignore`` file.

    Supports comments, blank lines, negation, directory-only patterns,
    anchored patterns and ``**``. Paths are matched relative to the
    directory holding the file; a path is ignored when it or any of its
    parent directories is ignored.
    """

    def __init__(self, root: Path, lines: list[str]) -> None:
        self.root = root
        self._rules: list[_IgnoreRule] = []
        for line in lines:
            rule = self._parse_line(line)
            if rule is not None:
                self._rules.append(rule)

    @classmethod
    def from_file(cls, path: Path) -> "GitignoreRules":
        """Load rules from a ``.gitignore`` file."""
        text = path.read_text(encoding="utf-8", errors="replace")
        return cls(path.parent.resolve(), text.splitlines())

    @staticmethod
    def _parse_line(line: str) -> _IgnoreRule | None:
        line = line.rstrip()
        if not line or line.startswith("#"):
            return None

        negated = line.startswith("!")
        if negated:
            line = line[1:]
        elif line.startswith("\\"):
            line = line[1:]

        dir_only = line.endswith("/")
        line = line.rstrip("/")
        if not line:
            return None

        anchored = "/" in line
        line = line.lstrip("/")
        body = _translate(line)
        regex = re.compile(f"^{body}$" if anchored else f"^(?:.*/)?{body}$")
        return _IgnoreRule(regex=regex, negated=negated, dir_only=dir_only)

    def __len__(self) -> int:
        return len(self._rules)

    def _match_one(self, rel: str, is_dir: bool) -> bool:
        ignored = False
        for rule in self._rules:
            if rule.dir_only and not is_dir:
                continue
            if rule.regex.match(rel):
                ignored = not rule.negated
        return ignored

    def is_ignored(self, path: Path, is_dir: bool = False, root: Path | None = None) -> bool:
        """
        Check whether *path* or any of its parents is ignored.

        *root* overrides the directory the patterns are relative to.
        """
        try:
            rel = path.relative_to(root or self.root)
        except ValueError:
            return False

        parts = rel.parts
        for depth in range(1, len(parts) + 1):
            candidate = "/".join(parts[:depth])
            last = depth == len(parts)
            if self._match_one(candidate, is_dir if last else True):
                return True
        return False


def find_project_gitignore(start: Path | None = None) -> GitignoreRules | None:
    """
    Find the nearest ``.gitignore`` walking up from *start*.

    The search stops at the first directory containing ``.git`` or at
    the filesystem root.
    """
    path = (start or Path.cwd()).resolve()
    for directory in (path, *path.parents):
        candidate = directory / ".gitignore"
        if candidate.is_file():
            return GitignoreRules.from_file(candidate)
        if (directory / ".git").exists():
            return None
    return None


def global_gitignore_path() -> Path:
    """
    Locate git's global excludes file.

    ``core.excludesFile`` from the user's git configuration wins; without
    it git falls back to ``$XDG_CONFIG_HOME/git/ignore``, or
    ``~/.config/git/ignore`` when that variable is unset.
    """
    try:
        result = subprocess.run(
            ["git", "config", "--global", "--path", "--get", "core.excludesFile"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        result = None

    if result is not None and result.returncode == 0 and result.stdout.strip():
        return Path(result.stdout.strip()).expanduser()

    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "git" / "ignore"


def find_global_gitignore(path: Path | None = None) -> GitignoreRules | None:
    """Load the global excludes file, or None when there is none."""
    path = path or global_gitignore_path()
    if not path.is_file():
        return None
    text = path.read_text(encoding="utf-8", errors="replace")
    return GitignoreRules(Path.cwd().resolve(), text.splitlines())


@dataclass
class PathFilter:
    """
    Filters changed paths before they reach the debouncer.

    Explicitly watched files always pass. Other paths are dropped when
    they match an ignore glob, when an extension list is given and the
    path's extension is not on it, or when the project gitignore or the
    global git excludes file ignores them. Global patterns are matched
    relative to the watched root holding the path.
    """

    roots: tuple[Path, ...] = ()
    watched_files: frozenset[Path] = field(default_factory=frozenset)
    ignore_globs: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()
    gitignore: GitignoreRules | None = None
    global_gitignore: GitignoreRules | None = None

    def _root_of(self, path: Path) -> Path | None:
        for root in self.roots:
            if path.is_relative_to(root):
                return root
        return None

    def _relative_parts(self, path: Path) -> tuple[str, ...]:
        root = self._root_of(path)
        if root is not None:
            return path.relative_to(root).parts
        return path.parts

    def _matches_glob(self, path: Path) -> bool:
        text = str(path)
        parts = self._relative_parts(path)
        for pattern in self.ignore_globs:
            if fnmatch.fnmatch(text, pattern):
                return True
            if any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def _matches_extension(self, path: Path) -> bool:
        suffix = path.suffix
        if suffix:
            return suffix[1:] in self.extensions
        # Dotfiles like ".env" have no suffix; match on the name instead
        name = path.name
        if name.startswith("."):
            return name[1:] in self.extensions
        return False

    def accepts(self, path: Path) -> bool:
        """Return True if a change to *path* should trigger a restart."""
        if path in self.watched_files:
            return True
        if self._matches_glob(path):
            return False
        if self.extensions and not self._matches_extension(path):
            return False
        if self.gitignore is not None and self.gitignore.is_ignored(path, path.is_dir()):
            return False
        if self.global_gitignore is not None and self.global_gitignore.is_ignored(
            path, path.is_dir(), root=self._root_of(path)
        ):
            return False
        return True
