"""Repository include/exclude allow-list."""

from fnmatch import fnmatchcase

from maintainer_inbox.github.models import Repo


class RepoFilter:
    """Decides which repositories of an organization are synced.

    Patterns match either the bare repository name or `owner/name`, and
    may use shell-style globs. Exclusion wins over inclusion.
    """

    def __init__(self, include: list[str] | None = None, exclude: list[str] | None = None):
        self.include = [p.lower() for p in (include or ["*"])]
        self.exclude = [p.lower() for p in (exclude or [])]

    @staticmethod
    def _matches(repo: Repo, patterns: list[str]) -> bool:
        names = (repo.name.lower(), repo.full_name.lower())
        return any(fnmatchcase(name, pattern) for pattern in patterns for name in names)

    def allows(self, repo: Repo) -> bool:
        if self._matches(repo, self.exclude):
            return False
        return self._matches(repo, self.include)
