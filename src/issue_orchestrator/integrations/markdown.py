"""Markdown checklist as an offline issue source.

    ## Section
    ### Sub-section
    - [x] Done item (numbered, not returned)
    - [ ] Open item, depends on #1 (becomes an issue)
      - [ ] Nested item (folded into the parent body)

Every top-level item gets a sequential number, checked or not, so "depends
on #N" can point at finished work.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

from issue_orchestrator.models import Issue, ProposedSplit, PullRequestResult, TrackerError

_SECTION = re.compile(r"^##\s+(.+)")
_SUB_SECTION = re.compile(r"^###\s+(.+)")
_NESTED_ITEM = re.compile(r"^(\s{2,})-\s*\[(.)\]\s+(.+)")
_ITEM = re.compile(r"^-\s*\[(.)\]\s+(.+)")
_INLINE_DEPS = re.compile(r"depends\s+on\s+[#\d,\s]+", re.IGNORECASE)
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_CODE = re.compile(r"`([^`]+)`")


@dataclass
class _Item:
    number: int
    title: str
    body: list[str] = field(default_factory=list)
    checked: bool = False
    section: str = ""


def _strip_markdown(text: str) -> str:
    return _CODE.sub(r"\1", _BOLD.sub(r"\1", text)).strip()


def parse_markdown_issues(content: str) -> list[Issue]:
    items: list[_Item] = []
    section = ""
    sub_section = ""
    parent: _Item | None = None

    for line in content.splitlines():
        if m := _SUB_SECTION.match(line):
            sub_section = m.group(1).strip()
            continue
        if m := _SECTION.match(line):
            section = m.group(1).strip()
            sub_section = ""
            continue

        if (m := _NESTED_ITEM.match(line)) and parent is not None:
            marker = "[x]" if m.group(2).lower() == "x" else "[ ]"
            parent.body.append(f"  - {marker} {_strip_markdown(m.group(3))}")
            continue

        if m := _ITEM.match(line):
            raw_title = m.group(2).strip()
            title = _strip_markdown(raw_title)
            item = _Item(
                number=len(items) + 1,
                title=title,
                checked=m.group(1).lower() == "x",
                section=section,
            )
            if section:
                item.body.append(f"## {section}")
            if sub_section:
                item.body.append(f"### {sub_section}")
            item.body += ["", title]
            if deps := _INLINE_DEPS.search(raw_title):
                refs = re.sub(r"^depends\s+on\s+", "", deps.group(0), flags=re.IGNORECASE)
                item.body += ["", f"> Depends on {refs.strip()}"]
            items.append(item)
            parent = item
            continue

        if line.strip() and not line.startswith("  "):
            parent = None

    return [
        Issue(
            number=item.number,
            title=item.title,
            body="\n".join(item.body),
            labels=[item.section] if item.section else [],
        )
        for item in items
        if not item.checked
    ]


class MarkdownTracker:
    """Read-only tracker over a checklist file. Cannot split issues; branches stay local."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def fetch_open_issues(self) -> list[Issue]:
        return parse_markdown_issues(self.path.read_text())

    def create_sub_issues(self, parent: Issue, splits: list[ProposedSplit], parent_deps: list[int]) -> list[Issue]:
        raise TrackerError(f"Cannot create sub-issues in {self.path}; split #{parent.number} by hand")

    def create_pr(self, title, body, base_branch, branch, worktree_path) -> PullRequestResult:
        # No remote to push to; the committed branch is the deliverable.
        return PullRequestResult(ok=True, pr_number=None)
