from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Iterator

from .execution.errors import UnsupportedLanguageError


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """How one language is stored, which image runs it, and how.

    `command_template` may reference `{file}` and `{stem}`; both are filled
    with the fixed workspace file name, never with submitted source.

    Example:
        ```python
        profile = LanguageProfile("python", "py", "python:3.10", "python {file}")
        ```
    """

    id: str
    file_extension: str
    runtime_image: str
    command_template: str

    @property
    def filename(self) -> str:
        return f"Main.{self.file_extension}"

    def build_run_command(self, filename: str) -> str:
        """Return the shell command that compiles and/or runs `filename`.

        Example:
            ```python
            cmd = profile.build_run_command("Main.java")  # "javac Main.java && java Main"
            ```
        """
        stem = PurePosixPath(filename).stem
        return self.command_template.format(file=shlex.quote(filename), stem=shlex.quote(stem))


class LanguageRegistry:
    """Read-only lookup table of language profiles.

    Example:
        ```python
        registry = LanguageRegistry([LanguageProfile("python", "py", "python:3.10", "python {file}")])
        profile = registry.lookup("python")
        ```
    """

    def __init__(self, profiles: Iterable[LanguageProfile]) -> None:
        table: dict[str, LanguageProfile] = {}
        for profile in profiles:
            if profile.id in table:
                raise ValueError(f"Duplicate language profile: {profile.id}")
            table[profile.id] = profile
        self._profiles = table

    def lookup(self, language_id: str | None) -> LanguageProfile:
        """Return the profile for `language_id` or raise UnsupportedLanguageError.

        Example:
            ```python
            DEFAULT_REGISTRY.lookup("java").runtime_image  # "openjdk:17"
            ```
        """
        profile = self._profiles.get(language_id or "")
        if profile is None:
            raise UnsupportedLanguageError(str(language_id))
        return profile

    def for_extension(self, extension: str) -> LanguageProfile | None:
        wanted = extension.lstrip(".").lower()
        for profile in self._profiles.values():
            if profile.file_extension == wanted:
                return profile
        return None

    def ids(self) -> list[str]:
        return list(self._profiles)

    def __contains__(self, language_id: object) -> bool:
        return language_id in self._profiles

    def __iter__(self) -> Iterator[LanguageProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)


DEFAULT_REGISTRY = LanguageRegistry(
    [
        LanguageProfile("python", "py", "python:3.10", "python {file}"),
        LanguageProfile("javascript", "js", "node:20", "node {file}"),
        LanguageProfile("java", "java", "openjdk:17", "javac {file} && java {stem}"),
    ]
)
