import re
from typing import List, Optional, Sequence, TypeVar

from bs4 import BeautifulSoup

T = TypeVar("T")

BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+(.+?)\s*$")
BLOCK_TAGS = ["p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "tr", "ul", "ol"]


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


def html_to_text(html: Optional[str]) -> str:
    """Convert a (possibly HTML) job description into readable text.

    List items become "• " bullets so requirement extraction can find them.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for li in soup.find_all("li"):
        li.insert_before("\n• ")
        li.insert_after("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_after("\n\n")

    text = soup.get_text()
    text = re.sub(r"[ \t\xa0]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_requirements(description: Optional[str]) -> List[str]:
    """Bullet-like lines (-, *, •, 1., 1)) from a plain-text description, deduplicated."""
    if not description:
        return []

    seen = set()
    requirements = []
    for line in description.splitlines():
        m = BULLET_RE.match(line.strip())
        if not m:
            continue
        req = m.group(1).strip()
        key = normalize_text(req)
        if req and key not in seen:
            seen.add(key)
            requirements.append(req)
    return requirements


def chunk_list(items: Sequence[T], size: int) -> List[List[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
