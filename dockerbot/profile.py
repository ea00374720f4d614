"""Execution profiles describing how each language is built and run.

Profiles are loaded once from the ``languages`` section of the configuration
and never change afterwards.  Command templates are stored as ordered token
tuples; the ``{file}`` placeholder is substituted inside individual tokens so a
file name containing whitespace always stays a single argument.
"""

from __future__ import annotations

import shlex
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

PLACEHOLDER = "{file}"


class CommandTemplate(BaseModel):
    """Argument vector template with ``{file}`` substitution points."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tokens: Tuple[str, ...]

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"tokens": tuple(shlex.split(value))}
        if isinstance(value, (list, tuple)):
            return {"tokens": tuple(str(tok) for tok in value)}
        return value

    @field_validator("tokens")
    @classmethod
    def _not_empty(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value or not value[0]:
            raise ValueError("command template must name an executable")
        return value

    @classmethod
    def parse(cls, value: str | Iterable[str]) -> "CommandTemplate":
        """Build a template from a shell-quoted string or a token list."""
        return cls.model_validate(value if isinstance(value, str) else list(value))

    def render(self, filename: str) -> List[str]:
        return [tok.replace(PLACEHOLDER, filename) for tok in self.tokens]

    def __str__(self) -> str:
        return shlex.join(self.tokens)


class ExecutionProfile(BaseModel):
    """Immutable descriptor of one language runtime."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    aliases: FrozenSet[str] = Field(default_factory=frozenset)
    extension: str
    path: str = PLACEHOLDER
    run: CommandTemplate
    compile: CommandTemplate | None = None
    image: str
    workdir: str | None = None

    @field_validator("name", "extension", "image")
    @classmethod
    def _non_blank(cls, value: str, info: ValidationInfo) -> str:
        if not value or not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value.strip()

    @field_validator("extension")
    @classmethod
    def _strip_dot(cls, value: str) -> str:
        return value.lstrip(".")

    @field_validator("path")
    @classmethod
    def _has_placeholder(cls, value: str) -> str:
        if PLACEHOLDER not in value:
            raise ValueError(f"path template must contain {PLACEHOLDER}")
        return value

    @field_validator("aliases", mode="before")
    @classmethod
    def _normalise_aliases(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        return frozenset(str(v).strip().lower() for v in value or () if str(v).strip())

    def matches(self, alias: str) -> bool:
        key = alias.strip().lower()
        return key == self.name.lower() or key in self.aliases

    def filename(self, stem: str) -> str:
        return f"{stem}.{self.extension}"

    def source_path(self, filename: str) -> str:
        return self.path.replace(PLACEHOLDER, filename)

    def run_command(self, filename: str) -> List[str]:
        return self.run.render(filename)

    def compile_command(self, filename: str) -> List[str] | None:
        if self.compile is None:
            return None
        return self.compile.render(filename)


class LanguageCatalog:
    """Read-only alias index over a set of :class:`ExecutionProfile`."""

    def __init__(self, profiles: Iterable[ExecutionProfile]) -> None:
        self._profiles: Tuple[ExecutionProfile, ...] = tuple(profiles)
        self._index: Dict[str, ExecutionProfile] = {}
        for profile in self._profiles:
            for key in {profile.name.lower(), *profile.aliases}:
                self._index.setdefault(key, profile)

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "LanguageCatalog":
        return cls(ExecutionProfile.model_validate(rec) for rec in records)

    def get(self, alias: str) -> ExecutionProfile | None:
        """Return the first profile matching ``alias`` or ``None``."""
        return self._index.get(alias.strip().lower())

    def images(self) -> List[str]:
        seen: Dict[str, None] = {}
        for profile in self._profiles:
            seen.setdefault(profile.image, None)
        return list(seen)

    def __iter__(self) -> Iterator[ExecutionProfile]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, alias: object) -> bool:
        return isinstance(alias, str) and self.get(alias) is not None


__all__ = ["PLACEHOLDER", "CommandTemplate", "ExecutionProfile", "LanguageCatalog"]
