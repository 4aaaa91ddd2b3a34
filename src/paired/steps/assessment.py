"""Built-in assessment step: summarise the project the team is joining."""

from __future__ import annotations

import argparse
import os
import sys
from collections import Counter
from pathlib import Path

PROJECT_MARKERS = {
    ".git": "git repository",
    "pyproject.toml": "Python project",
    "setup.py": "Python project",
    "package.json": "Node.js project",
    "Cargo.toml": "Rust crate",
    "go.mod": "Go module",
    "pom.xml": "Maven project",
    "Makefile": "Make build",
    "Dockerfile": "container image",
}
LANGUAGES = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".rb": "Ruby",
    ".c": "C",
    ".h": "C",
    ".cpp": "C++",
    ".md": "Markdown",
}
SKIP_DIRS = frozenset(
    {".git", ".venv", "venv", "node_modules", "__pycache__", "dist", "build", ".paired"},
)
MAX_FILES = 5000


def scan(root: Path, *, max_files: int = MAX_FILES) -> tuple[Counter[str], int]:
    """Count source files per language below ``root``, pruning vendored trees."""

    languages: Counter[str] = Counter()
    total = 0
    for _current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in SKIP_DIRS)
        for filename in filenames:
            total += 1
            language = LANGUAGES.get(Path(filename).suffix.lower())
            if language:
                languages[language] += 1
            if total >= max_files:
                return languages, total
    return languages, total


def summarize(root: Path) -> list[str]:
    markers = sorted({label for name, label in PROJECT_MARKERS.items() if (root / name).exists()})
    languages, total = scan(root)
    if total == 0:
        return [f"Fresh project at {root}: no files yet."]

    lines = [f"Existing project at {root}: {total} files."]
    if markers:
        lines.append(f"Detected: {', '.join(markers)}.")
    if languages:
        ranked = ", ".join(f"{name} ({count})" for name, count in languages.most_common(5))
        lines.append(f"Languages: {ranked}.")
    return lines


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Summarise a project directory.")
    parser.add_argument("path", nargs="?", default=None)
    args = parser.parse_args(argv)

    root = Path(args.path or os.getenv("PAIRED_PROJECT_PATH") or os.getcwd()).resolve()
    if not root.is_dir():
        print(f"Project path is not a directory: {root}", file=sys.stderr)
        return 2
    for line in summarize(root):
        print(line)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
