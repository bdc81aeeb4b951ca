"""Plan workspaces: ``.ledgerun/plans/<slug>/`` and the artifacts inside them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from ledgerun.errors import MissingPrerequisite, PlanNotFound
from ledgerun.io_utils import read_optional, write_text

STATE_DIR = Path(".ledgerun")
PLANS_DIR = STATE_DIR / "plans"

LOCK_IGNORE_PATTERN = "*.lock"

EXECUTE_PREREQUISITES = ("requirements.md", "research.md", "design.md", "tasks.md")

_SUMMARY_RE = re.compile(r"^phase-(\d+)-summary\.md$")


@dataclass(frozen=True)
class Workspace:
    """Paths of one plan inside a repository."""

    slug: str
    repo_dir: Path

    @property
    def dir(self) -> Path:
        return self.repo_dir / PLANS_DIR / self.slug

    @property
    def requirements_path(self) -> Path:
        return self.dir / "requirements.md"

    @property
    def research_path(self) -> Path:
        return self.dir / "research.md"

    @property
    def design_path(self) -> Path:
        return self.dir / "design.md"

    @property
    def tasks_path(self) -> Path:
        return self.dir / "tasks.md"

    @property
    def questions_path(self) -> Path:
        return self.dir / "questions.md"

    @property
    def history_dir(self) -> Path:
        return self.dir / "history"

    def exists(self) -> bool:
        return self.dir.is_dir()

    def create(self) -> None:
        self.history_dir.mkdir(parents=True, exist_ok=True)
        self.ignore_lock_files()

    def ignore_lock_files(self) -> None:
        """Add ``*.lock`` to ``.ledgerun/.gitignore`` so checkpoint commits skip ledger locks."""
        path = self.repo_dir / STATE_DIR / ".gitignore"
        text = read_optional(path)
        if LOCK_IGNORE_PATTERN in (line.strip() for line in text.splitlines()):
            return
        head = f"{text.rstrip()}\n" if text.strip() else ""
        write_text(path, f"{head}{LOCK_IGNORE_PATTERN}\n")

    def check_prerequisites(self, names: tuple[str, ...] = EXECUTE_PREREQUISITES) -> None:
        """Raise :class:`MissingPrerequisite` naming every absent artifact."""
        missing = [n for n in names if not (self.dir / n).is_file()]
        if missing:
            raise MissingPrerequisite(
                f"plan {self.slug!r} is missing {', '.join(missing)} in {self.dir}"
            )

    def read_phase_summaries(self) -> str:
        """Concatenate ``history/phase-N-summary.md`` files in phase order."""
        if not self.history_dir.is_dir():
            return ""
        found: list[tuple[int, Path]] = []
        for p in self.history_dir.iterdir():
            m = _SUMMARY_RE.match(p.name)
            if m and p.is_file():
                found.append((int(m.group(1)), p))
        parts = [read_optional(p).strip() for _, p in sorted(found)]
        return "\n\n".join(part for part in parts if part)


def list_plans(repo_dir: Path) -> list[Workspace]:
    root = repo_dir / PLANS_DIR
    if not root.is_dir():
        return []
    return [
        Workspace(slug=p.name, repo_dir=repo_dir)
        for p in sorted(root.iterdir())
        if p.is_dir()
    ]


def resolve_plan(slug: str, repo_dir: Path) -> Workspace:
    """Resolve *slug* to a plan: sole plan, exact match, or unique prefix."""
    plans = list_plans(repo_dir)
    names = [p.slug for p in plans]

    if not slug:
        if not plans:
            raise PlanNotFound(f"no plans found in {repo_dir / PLANS_DIR}")
        if len(plans) == 1:
            return plans[0]
        raise PlanNotFound(f"multiple plans found, specify one: {', '.join(names)}")

    for p in plans:
        if p.slug == slug:
            return p

    matches = [p for p in plans if p.slug.startswith(slug)]
    if not matches:
        raise PlanNotFound(f"plan {slug!r} not found")
    if len(matches) > 1:
        raise PlanNotFound(
            f"ambiguous plan prefix {slug!r} matches: {', '.join(p.slug for p in matches)}"
        )
    return matches[0]


def slugify(text: str, max_len: int = 50) -> str:
    """Convert text to a kebab-case plan slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_len].rstrip("-") or "plan"
