"""Conventional Commits message assembly."""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

COMMIT_TYPES: tuple[tuple[str, str], ...] = (
    ("feat", "A new feature"),
    ("fix", "A bug fix"),
    ("docs", "Documentation only changes"),
    ("style", "Changes that do not affect meaning (whitespace, formatting, etc.)"),
    ("refactor", "A code change that neither fixes a bug nor adds a feature"),
    ("test", "Adding missing tests or correcting existing tests"),
    ("chore", "Changes to the build process or auxiliary tools"),
    ("perf", "A code change that improves performance"),
    ("ci", "Changes to CI configuration files and scripts"),
    ("build", "Changes that affect the build system or external dependencies"),
    ("revert", "Reverts a previous commit"),
)

_TYPE_WORDS = (
    "feat|fix|docs?|style|refactor|test|chore|perf|ci|build|revert"
    "|hotfix|security|update|add|remove"
)

# Colon may be ASCII or full-width
_COMMIT_TYPE_PATTERNS = (
    re.compile(rf"^({_TYPE_WORDS})(\(.+?\))?!?\s*[:：]\s*", re.IGNORECASE),
    re.compile(rf"^\[({_TYPE_WORDS})\]\s*[:：]?\s*", re.IGNORECASE),
)

_TITLE_CLEAN_PATTERNS = (
    # Leading tag: [x], 【x】, (x), ABC- / ABC:
    re.compile(r"^(?:\[[^\]]+\]|【[^】]+】|\([^)]+\)|[A-Z]+[-:])\s*-?\s*"),
    *_COMMIT_TYPE_PATTERNS,
    re.compile(
        r"^(新功能|功能|修复|修改|文档|样式|重构|测试|维护|性能|持续集成|构建"
        r"|回滚|热修复|安全|更新|添加|删除)[:：]\s*"
    ),
)

_FOOTER_RE = re.compile(
    r"^(BREAKING\s+CHANGE|BREAKING-CHANGE|Closes|Fixes|Resolves|Refs?|See)\b",
    re.IGNORECASE,
)
_BREAKING_RE = re.compile(r"^(BREAKING\s+CHANGE|BREAKING-CHANGE)", re.IGNORECASE)
_CLOSING_RE = re.compile(r"^(Closes|Fixes|Resolves)\s+#?(\d+)", re.IGNORECASE)

BREAKING_FOOTER = (
    "BREAKING CHANGE: this change is not backwards compatible with existing usage"
)


@dataclass(frozen=True)
class IssueType:
    type: str
    icon: str
    label: str


_OTHER = IssueType("other", "[OTHER]", "Other")

# (pattern, type) pairs; first match wins
_ISSUE_TYPE_RULES: tuple[tuple[re.Pattern[str], IssueType], ...] = tuple(
    (
        re.compile(
            rf"^(\[?(?:{words})\]?[:：\s-]|(?:{words})\s*[:：])", re.IGNORECASE
        ),
        IssueType(kind, f"[{kind.upper()}]", label),
    )
    for words, kind, label in (
        ("feat|feature|新功能|功能", "feat", "Feature"),
        ("fix|bug|bugfix|修复|修改", "fix", "Bug fix"),
        ("docs?|文档|说明", "docs", "Documentation"),
        ("style|样式|格式", "style", "Style"),
        ("refactor|重构", "refactor", "Refactor"),
        ("test|测试", "test", "Test"),
        ("chore|杂项|维护|配置", "chore", "Chore"),
        ("perf|性能|优化", "perf", "Performance"),
        ("ci|持续集成|集成", "ci", "CI/CD"),
        ("build|构建|编译", "build", "Build"),
        ("revert|回滚|撤销", "revert", "Revert"),
        ("hotfix|紧急修复|热修复", "hotfix", "Hotfix"),
        ("security|安全", "security", "Security"),
        ("update|更新|升级", "update", "Update"),
        ("add|添加|新增", "add", "Add"),
        ("remove|删除|移除", "remove", "Remove"),
    )
)


def clean_issue_title(title: str) -> str:
    """Strip one leading tag or type prefix from an issue title.

    Falls back to the original title if the result would be shorter than
    three characters.
    """
    if not title:
        return title

    cleaned = title
    for pattern in _TITLE_CLEAN_PATTERNS:
        candidate = pattern.sub("", cleaned, count=1).strip()
        if candidate and candidate != cleaned:
            cleaned = candidate
            break

    if len(cleaned) < 3:
        return title
    return cleaned


def detect_issue_type(title: str) -> IssueType:
    """Guess the commit type an issue title suggests."""
    if not title:
        return _OTHER
    for pattern, issue_type in _ISSUE_TYPE_RULES:
        if pattern.search(title):
            return issue_type
    return _OTHER


def remove_commit_type_prefix(title: str) -> str:
    """Remove type prefixes and trailing breaking/closing paragraphs."""
    cleaned = title
    for pattern in _COMMIT_TYPE_PATTERNS:
        cleaned = pattern.sub("", cleaned, count=1).strip()

    cleaned = re.sub(r"\n\nBREAKING CHANGE:.*$", "", cleaned, flags=re.DOTALL).strip()
    cleaned = re.sub(r"\n\nCloses #\d+$", "", cleaned, flags=re.MULTILINE).strip()
    return cleaned or title


@dataclass
class MessageSections:
    """Body and footers of an existing commit message (subject excluded)."""

    body: list[str] = field(default_factory=list)
    footers: list[str] = field(default_factory=list)
    has_breaking_footer: bool = False
    issue_numbers: set[int] = field(default_factory=set)


def parse_existing_sections(message: str | None) -> MessageSections:
    """Split a commit message below its subject into body and footers.

    Footers start at the first BREAKING CHANGE / Closes / Fixes / Resolves /
    Ref(s) / See line; everything from there on is a footer.
    """
    if not message or not message.strip():
        return MessageSections()

    lines = message.splitlines()[1:]
    while lines and not lines[0].strip():
        lines.pop(0)

    body: list[str] = []
    footers: list[str] = []
    in_footer = False
    for line in lines:
        line = line.rstrip()
        if _FOOTER_RE.match(line.strip()):
            in_footer = True
        (footers if in_footer else body).append(line)

    while body and not body[-1].strip():
        body.pop()
    while footers and not footers[0].strip():
        footers.pop(0)

    issue_numbers: set[int] = set()
    for footer in footers:
        match = _CLOSING_RE.match(footer)
        if match:
            issue_numbers.add(int(match.group(2)))

    return MessageSections(
        body=body,
        footers=footers,
        has_breaking_footer=any(_BREAKING_RE.match(f.strip()) for f in footers),
        issue_numbers=issue_numbers,
    )


def build_commit_message(
    commit_type: str,
    title: str,
    scope: str = "",
    issue_numbers: Iterable[int] = (),
    breaking: bool = False,
    existing_message: str | None = None,
) -> str:
    """Assemble a Conventional Commits message.

    The body of ``existing_message`` is kept, its footers are merged with the
    new ones (case-insensitive de-duplication), and a ``Closes #N`` footer is
    added for each issue number not already closed by an existing footer.
    """
    sections = parse_existing_sections(existing_message)
    mark_breaking = breaking or sections.has_breaking_footer

    header = commit_type
    if scope.strip():
        header += f"({scope.strip()})"
    if mark_breaking:
        header += "!"
    header += f": {remove_commit_type_prefix(title)}"

    lines = [header]
    if sections.body:
        lines.append("")
        lines.extend(sections.body)

    footer_lines: list[str] = []
    seen: set[str] = set()

    def add_footer(footer: str) -> None:
        footer = footer.strip()
        if footer and footer.lower() not in seen:
            seen.add(footer.lower())
            footer_lines.append(footer)

    for footer in sections.footers:
        add_footer(footer)
    if mark_breaking and not sections.has_breaking_footer:
        add_footer(BREAKING_FOOTER)

    closed = set(sections.issue_numbers)
    for number in issue_numbers:
        number = int(number)
        if number not in closed:
            add_footer(f"Closes #{number}")
            closed.add(number)

    if footer_lines:
        lines.append("")
        lines.extend(footer_lines)
    return "\n".join(lines)
