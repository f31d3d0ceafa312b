"""Map changed file paths to the language they are written in."""

import posixpath
from typing import Optional

EXTENSION_LANGUAGES = {
    ".go": "Go",
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".cs": "C#",
    ".php": "PHP",
    ".rb": "Ruby",
    ".rs": "Rust",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sass": "Sass",
    ".vue": "Vue",
    ".jsx": "React",
    ".tsx": "React",
    ".sh": "Shell",
    ".bash": "Shell",
    ".zsh": "Shell",
    ".sql": "SQL",
    ".json": "JSON",
    ".xml": "XML",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".toml": "TOML",
    ".ini": "INI",
    ".md": "Markdown",
    ".txt": "Text",
    ".dockerfile": "Docker",
    ".dockerignore": "Docker",
}


def language_for_path(path: str) -> Optional[str]:
    """Return the language of ``path`` from its last suffix, or None if unknown.

    Only the final suffix counts, so ``bundle.min.js`` is JavaScript and a bare
    ``Dockerfile`` has no language.
    """
    _, ext = posixpath.splitext(path or "")
    return EXTENSION_LANGUAGES.get(ext.lower())
