from __future__ import annotations

"""File fingerprints used to detect changes under watched globs."""

import fnmatch
import hashlib
import os
from pathlib import Path
from typing import Dict, Iterable, List, Tuple


Fingerprint = Tuple


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def safe_stat(path: Path) -> dict:
    try:
        st = path.stat()
        return {"size": st.st_size, "mtime": st.st_mtime}
    except FileNotFoundError:
        return {"size": None, "mtime": None}


def _glob_base(pattern: str) -> Path:
    head = pattern
    for ch in "*?[":
        head = head.split(ch)[0]
    if head.endswith(("/", os.sep)):
        return Path(head)
    return Path(head).parent


def _matches(path: str, pattern: str) -> bool:
    if fnmatch.fnmatch(path, pattern):
        return True
    # `**/` may also match zero directories
    return "**/" in pattern and fnmatch.fnmatch(path, pattern.replace("**/", ""))


def expand_globs(patterns: Iterable[str]) -> List[Path]:
    """Expand glob patterns into existing files.

    Patterns starting with `!` exclude whatever earlier patterns matched.
    `*` also matches across directory separators.
    """
    include: list[str] = []
    exclude: list[str] = []
    for pat in patterns:
        if pat.startswith("!"):
            exclude.append(os.path.normpath(pat[1:]))
        else:
            include.append(pat)

    found: dict[str, Path] = {}
    for pat in include:
        if any(ch in pat for ch in "*?["):
            norm = os.path.normpath(pat)
            base = _glob_base(pat)
            for root, _, files in os.walk(base):
                for file in files:
                    p = Path(root) / file
                    if _matches(os.path.normpath(str(p)), norm):
                        found[str(p)] = p
        else:
            p = Path(pat)
            if p.is_file():
                found[str(p)] = p
    return [
        p
        for key, p in sorted(found.items())
        if not any(_matches(os.path.normpath(key), ex) for ex in exclude)
    ]


def fingerprint(path: Path, checksum: bool = False) -> Fingerprint:
    st = safe_stat(path)
    digest = None
    if checksum and st["size"] is not None:
        try:
            digest = file_digest(path)
        except FileNotFoundError:
            digest = None
    return (st["size"], st["mtime"], digest)


def snapshot(patterns: Iterable[str], checksum: bool = False) -> Dict[str, Fingerprint]:
    return {str(p): fingerprint(p, checksum) for p in expand_globs(patterns)}


def changed_paths(
    before: Dict[str, Fingerprint], after: Dict[str, Fingerprint]
) -> List[str]:
    """Paths added, removed or modified between two snapshots."""
    changed = {p for p in after if before.get(p) != after[p]}
    changed.update(p for p in before if p not in after)
    return sorted(changed)
