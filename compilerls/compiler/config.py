"""
Workspace configuration

Settings that influence every compilation: import remappings, the target
version handed to the engine and extra directories imports may be read
from. Defaults come from `.compilerls.yaml` in the workspace root; the
client can override them through `initializationOptions` and
`workspace/didChangeConfiguration`.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

CONFIG_FILE_NAME = ".compilerls.yaml"

# Settings may be namespaced under this key in the client payload.
SETTINGS_SECTION = "compilerls"


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class Remapping:
    """
    Import path rewrite rule of the form `[context:]prefix=target`.

    The rule applies to imports whose path starts with `prefix`, from
    sources whose name starts with `context` (every source if empty).
    """

    context: str
    prefix: str
    target: str

    @classmethod
    def parse(cls, text: str) -> Remapping:
        if not isinstance(text, str):
            raise ConfigurationError(f"Remapping must be a string, got {text!r}")

        head, sep, target = text.partition("=")
        if not sep or not head:
            raise ConfigurationError(f"Invalid remapping {text!r}: expected prefix=target")

        context, colon, prefix = head.rpartition(":")
        if not colon:
            context, prefix = "", head
        if not prefix:
            raise ConfigurationError(f"Invalid remapping {text!r}: empty prefix")

        return cls(context=context, prefix=prefix, target=target)

    def applies_to(self, importing_source: str, path: str) -> bool:
        return importing_source.startswith(self.context) and path.startswith(self.prefix)

    def apply(self, path: str) -> str:
        return self.target + path[len(self.prefix):]

    def __str__(self) -> str:
        head = f"{self.context}:{self.prefix}" if self.context else self.prefix
        return f"{head}={self.target}"


def apply_remappings(
    remappings: list[Remapping], importing_source: str, path: str
) -> str:
    """
    Rewrite an import path with the best matching remapping.

    The longest context wins, then the longest prefix; the last rule wins
    ties.
    """
    best: Remapping | None = None
    for remapping in remappings:
        if not remapping.applies_to(importing_source, path):
            continue
        if best is None or (len(remapping.context), len(remapping.prefix)) >= (
            len(best.context),
            len(best.prefix),
        ):
            best = remapping
    if best is None:
        return path
    return posixpath.normpath(best.apply(path))


@dataclass
class WorkspaceConfig:
    remappings: list[Remapping] = field(default_factory=list)
    target_version: str | None = None
    include_paths: list[Path] = field(default_factory=list)

    @classmethod
    def load(cls, root: Path) -> WorkspaceConfig:
        """
        Read `.compilerls.yaml` from `root`.

        A missing file yields the defaults.

        Raises:
            ConfigurationError: the file is not valid YAML or holds invalid
                settings.
        """
        config = cls()
        config_file = root / CONFIG_FILE_NAME
        if not config_file.is_file():
            return config

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read {config_file}: {e}") from e

        if data is None:
            return config
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"{config_file} must contain a mapping")

        errors = config.update(data, base=root)
        if errors:
            raise ConfigurationError(f"{config_file}: " + "; ".join(errors))
        return config

    def update(self, settings: object, base: Path | None = None) -> list[str]:
        """
        Apply client or file settings on top of the current values.

        Valid entries are applied even when others are rejected.

        Returns:
            A message for every rejected entry.
        """
        if settings is None:
            return []
        if not isinstance(settings, Mapping):
            return [f"Settings must be an object, got {type(settings).__name__}"]

        section = settings.get(SETTINGS_SECTION)
        if isinstance(section, Mapping):
            settings = section

        errors: list[str] = []

        raw_remappings = settings.get("remappings")
        if raw_remappings is not None:
            if isinstance(raw_remappings, list):
                remappings = []
                for raw in raw_remappings:
                    try:
                        remappings.append(Remapping.parse(raw))
                    except ConfigurationError as e:
                        errors.append(str(e))
                self.remappings = remappings
            else:
                errors.append("remappings must be a list of strings")

        target_version = settings.get("targetVersion", settings.get("target_version"))
        if target_version is not None:
            if isinstance(target_version, str) and target_version.strip():
                self.target_version = target_version.strip()
            else:
                errors.append(f"Invalid target version {target_version!r}")

        raw_include = settings.get("includePaths", settings.get("include_paths"))
        if raw_include is not None:
            if isinstance(raw_include, list) and all(isinstance(p, str) for p in raw_include):
                paths = [Path(p) for p in raw_include]
                if base is not None:
                    paths = [p if p.is_absolute() else (base / p) for p in paths]
                self.include_paths = [p.resolve() for p in paths]
            else:
                errors.append("include paths must be a list of strings")

        return errors
