"""Utilities for loading imifixer configuration profiles and settings.

Settings are resolved from, in increasing precedence: field defaults, the
selected profile in ``imifixer.toml``, ``IMIFIXER_*`` environment variables,
then explicit command line options.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from apps.imifixer.utils.errors import ImiFixerConfigError
from libraries.pipeline.events import INCOMING_PATTERN
from libraries.reconcile.index import REFERENCE_PATTERN

CONFIG_FILENAME = "imifixer.toml"
ENV_PREFIX = "IMIFIXER_"


class FixerSettings(BaseSettings):
    watch_folder: Path | None = None
    output_folder: Path | None = None
    reference_folder: Path
    file_pattern: str = INCOMING_PATTERN
    reference_pattern: str = REFERENCE_PATTERN
    quiet_period: float = Field(default=1.0, ge=0.0)
    max_attempts: int = Field(default=10, ge=1)
    retry_delay: float = Field(default=0.01, ge=0.0)
    workers: int = Field(default=4, ge=1)

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("watch_folder", "output_folder", "reference_folder")
    @classmethod
    def _folder_must_exist(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        folder = value.expanduser()
        if not folder.is_dir():
            raise ValueError(f"folder does not exist: {folder}")
        return folder.resolve()

    @model_validator(mode="after")
    def _folders_outside_watch(self) -> "FixerSettings":
        watch = self.watch_folder
        if watch is None:
            return self
        if _within(self.output_folder, watch):
            raise ValueError(
                "output_folder must not be inside watch_folder; corrected files would be picked up again"
            )
        if _within(self.reference_folder, watch):
            raise ValueError(
                "reference_folder must not be inside watch_folder; reference files would be consumed"
            )
        return self


def _within(folder: Path | None, parent: Path) -> bool:
    return folder is not None and (folder == parent or parent in folder.parents)


@dataclass(frozen=True)
class ProfileContext:
    """Container describing a resolved configuration profile."""

    name: str
    data: Mapping[str, Any]
    sources: tuple[Path, ...]


def load_settings(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> FixerSettings:
    """Resolve :class:`FixerSettings` for the requested profile."""

    context = load_profile(
        profile=profile, workspace=workspace, project_root=project_root
    )
    values: Dict[str, Any] = {
        key: value
        for key, value in context.data.items()
        if key in FixerSettings.model_fields and not _env_defines(key)
    }
    values.update(
        {key: value for key, value in (overrides or {}).items() if value is not None}
    )
    try:
        return FixerSettings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ImiFixerConfigError(f"Invalid imifixer settings: {problems}") from exc


def _env_defines(field_name: str) -> bool:
    wanted = f"{ENV_PREFIX}{field_name}".upper()
    return any(name.upper() == wanted for name in os.environ)


def load_profile(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
) -> ProfileContext:
    """Load and merge imifixer configuration before selecting *profile*.

    The configuration is sourced from up to three locations, in the following
    precedence order (lowest to highest): user, project, then workspace.  Each
    location may provide a :mod:`toml` document containing a ``profiles`` table
    with named dictionaries of settings.  Later files override earlier ones via
    deep-merge semantics.

    When *profile* is ``None`` the loader falls back to the ``IMIFIXER_PROFILE``
    environment variable, then to ``default_profile`` and finally to
    ``"default"``.
    """

    merged_config: Dict[str, Any] = {}
    sources: list[Path] = []

    for path in _iter_config_paths(workspace=workspace, project_root=project_root):
        try:
            document = _load_toml(path)
        except OSError as exc:  # pragma: no cover - filesystem errors are rare.
            raise ImiFixerConfigError(
                f"Unable to read configuration file '{path}': {exc}"
            ) from exc
        except tomllib.TOMLDecodeError as exc:
            raise ImiFixerConfigError(
                f"Configuration file '{path}' is not valid TOML: {exc}"
            ) from exc
        merged_config = _deep_merge(merged_config, document)
        sources.append(path)

    profiles = merged_config.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise ImiFixerConfigError(
            "The 'profiles' table must contain mappings of settings"
        )

    selected_profile = _determine_profile_name(merged_config, profile)

    profile_data: Mapping[str, Any]
    if selected_profile in profiles:
        raw_data = profiles[selected_profile]
        if not isinstance(raw_data, Mapping):
            raise ImiFixerConfigError(
                f"Profile '{selected_profile}' must be a mapping of configuration values"
            )
        profile_data = dict(raw_data)
    elif selected_profile == "default" or not profiles:
        profile_data = {}
    else:
        available = ", ".join(sorted(str(name) for name in profiles)) or "<none>"
        raise ImiFixerConfigError(
            f"Profile '{selected_profile}' was not found. Available profiles: {available}."
        )

    return ProfileContext(
        name=selected_profile,
        data=profile_data,
        sources=tuple(sources),
    )


def _iter_config_paths(
    *, workspace: Path | None, project_root: Path | None
) -> Iterable[Path]:
    """Yield configuration files in precedence order."""

    yielded: set[Path] = set()

    candidates: list[Path] = list(_user_config_paths())
    project_candidate = project_root
    if project_candidate is None:
        env_root = os.environ.get("IMIFIXER_PROJECT_ROOT")
        project_candidate = Path(env_root) if env_root else Path.cwd()
    candidates.append(project_candidate / CONFIG_FILENAME)
    if workspace is not None:
        candidates.append(workspace / CONFIG_FILENAME)

    for path in candidates:
        if path.exists() and path not in yielded:
            yielded.add(path)
            yield path


def _user_config_paths() -> tuple[Path, ...]:
    home = Path(os.path.expanduser("~"))
    xdg_config = os.environ.get("XDG_CONFIG_HOME")

    candidates = []
    if xdg_config:
        candidates.append(Path(xdg_config) / "imifixer" / CONFIG_FILENAME)

    candidates.append(home / ".config" / "imifixer" / CONFIG_FILENAME)
    candidates.append(home / CONFIG_FILENAME)

    return tuple(candidates)


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _deep_merge(base: Dict[str, Any], new: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in new.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _determine_profile_name(config: Mapping[str, Any], override: str | None) -> str:
    if override:
        return override

    env_profile = os.environ.get("IMIFIXER_PROFILE")
    if env_profile:
        return env_profile

    default_profile = config.get("default_profile")
    if isinstance(default_profile, str) and default_profile:
        return default_profile

    return "default"
