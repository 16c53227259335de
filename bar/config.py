"""Configuration loading for BAR.

The project configuration lives in ``config.yaml`` at the project root. It is
read with PyYAML, merged over defaults, validated and turned into a frozen
``Config``. Nothing on disk is touched while loading, so a bad configuration
aborts the build before any output is written.

Key functions:
- load_config: Read, validate and resolve ``config.yaml``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .utils import normalize_page_path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

DEFAULT_STATIC_EXTENSIONS = (
    "css",
    "js",
    "png",
    "jpg",
    "jpeg",
    "gif",
    "svg",
    "webmanifest",
    "ico",
    "txt",
)

DEFAULT_ALT_TEXT_PROMPT = "Describe this image in detail"
DEFAULT_ALT_TEXT_TEMPERATURE = 0.1

DEFAULT_CONFIG: dict[str, Any] = {
    "static_files_extensions": list(DEFAULT_STATIC_EXTENSIONS),
    "template_config": {},
    "yamd_processors": {},
    "max_render_passes": 100,
    "max_workers": 8,
    "feeds": [],
}

REQUIRED_FIELDS = (
    "content_path",
    "static_source_path",
    "dist_path",
    "template",
    "domain",
    "title",
    "description",
)

FEED_TYPES = ("json", "rss")


class ConfigError(Exception):
    """Error raised for a missing or malformed configuration.

    Attributes:
        config_path: Path to the configuration file.
        field: Name of the offending field, if any.
        message: Human-readable error message.
    """

    def __init__(self, config_path: Path, message: str, field: str | None = None):
        self.config_path = config_path
        self.field = field
        self.message = message
        location = f"{config_path} [{field}]" if field else str(config_path)
        super().__init__(f"{location}: {message}")


@dataclass(frozen=True)
class AltTextConfig:
    """Settings of the alt text generator.

    Attributes:
        prompt: Prompt passed to the caption model.
        temperature: Sampling temperature passed to the caption model.
        model: ``module:factory`` import path of the captioner, or None.
    """

    prompt: str = DEFAULT_ALT_TEXT_PROMPT
    temperature: float = DEFAULT_ALT_TEXT_TEMPERATURE
    model: str | None = None


@dataclass(frozen=True)
class FeedConfig:
    path: str
    type: str


@dataclass(frozen=True)
class Config:
    """Validated project configuration with paths resolved against the project root.

    Attributes:
        project_root: Directory containing ``config.yaml``.
        content_path: Directory of Markdown content.
        static_source_path: User static files root.
        static_files_extensions: Whitelisted static file extensions, without dots.
        dist_path: Output directory.
        template: Template directory.
        domain: Absolute site URL.
        title: Site title.
        description: Site description.
        template_config: Opaque values passed through to templates.
        generate_alt_text: Alt text settings, or None when the feature is off.
        max_render_passes: Bound on fixed-point render passes.
        max_workers: Worker threads for content transforms.
        feeds: Feeds registered before rendering starts.
    """

    project_root: Path
    content_path: Path
    static_source_path: Path
    dist_path: Path
    template: Path
    domain: str
    title: str
    description: str
    static_files_extensions: tuple[str, ...] = DEFAULT_STATIC_EXTENSIONS
    template_config: dict[str, Any] = field(default_factory=dict)
    generate_alt_text: AltTextConfig | None = None
    max_render_passes: int = 100
    max_workers: int = 8
    feeds: tuple[FeedConfig, ...] = ()

    def as_template_context(self) -> dict[str, Any]:
        """Return the configuration values exposed to templates."""
        return {
            "domain": self.domain,
            "title": self.title,
            "description": self.description,
            "template_config": self.template_config,
        }


def load_config(project_root: Path) -> Config:
    """Load and validate ``config.yaml``.

    Args:
        project_root: Root directory of the project.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or a field is
            missing or has the wrong type.
    """
    config_path = project_root / CONFIG_FILENAME
    logger.debug("reading config at %s", config_path)
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigError(config_path, "configuration file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(config_path, f"invalid YAML: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigError(config_path, "configuration must be a mapping")

    raw = DEFAULT_CONFIG.copy()
    raw.update(loaded)

    for name in REQUIRED_FIELDS:
        value = raw.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(config_path, "required non-empty string", name)

    domain = raw["domain"].strip()
    if not domain.startswith(("http://", "https://")):
        raise ConfigError(config_path, "must be an absolute http(s) URL", "domain")

    extensions = raw["static_files_extensions"]
    if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
        raise ConfigError(config_path, "must be a list of strings", "static_files_extensions")

    template_config = raw["template_config"]
    if not isinstance(template_config, dict):
        raise ConfigError(config_path, "must be a mapping", "template_config")

    root = project_root.resolve()
    config = Config(
        project_root=root,
        content_path=root / raw["content_path"],
        static_source_path=root / raw["static_source_path"],
        dist_path=root / raw["dist_path"],
        template=root / raw["template"],
        domain=domain,
        title=raw["title"],
        description=raw["description"],
        static_files_extensions=tuple(e.lower().lstrip(".") for e in extensions),
        template_config=template_config,
        generate_alt_text=_parse_alt_text(config_path, raw["yamd_processors"]),
        max_render_passes=_positive_int(config_path, raw, "max_render_passes"),
        max_workers=_positive_int(config_path, raw, "max_workers"),
        feeds=_parse_feeds(config_path, raw["feeds"]),
    )
    _check_dist_path(config_path, config)
    logger.info("loaded config for %s", config.domain)
    return config


def _check_dist_path(config_path: Path, config: Config) -> None:
    """Refuse a dist directory whose cleaning would delete project inputs."""
    dist = config.dist_path.resolve()
    if config.project_root.is_relative_to(dist):
        raise ConfigError(config_path, "must not contain the project root", "dist_path")
    for name in ("content_path", "template", "static_source_path"):
        source = getattr(config, name).resolve()
        if source == dist or source.is_relative_to(dist):
            raise ConfigError(config_path, f"must not contain {name}", "dist_path")
        if dist.is_relative_to(source):
            raise ConfigError(config_path, f"must not be inside {name}", "dist_path")


def _positive_int(config_path: Path, raw: dict[str, Any], name: str) -> int:
    value = raw[name]
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(config_path, "must be a positive integer", name)
    return value


def _parse_alt_text(config_path: Path, processors: Any) -> AltTextConfig | None:
    """Parse ``yamd_processors.generate_alt_text``.

    The feature is enabled by the presence of the key; an empty value uses
    the default prompt and temperature.
    """
    if processors is None:
        return None
    if not isinstance(processors, dict):
        raise ConfigError(config_path, "must be a mapping", "yamd_processors")
    if "generate_alt_text" not in processors:
        return None
    section = processors["generate_alt_text"] or {}
    field_name = "yamd_processors.generate_alt_text"
    if not isinstance(section, dict):
        raise ConfigError(config_path, "must be a mapping", field_name)

    prompt = section.get("prompt", DEFAULT_ALT_TEXT_PROMPT)
    if not isinstance(prompt, str) or not prompt.strip():
        raise ConfigError(config_path, "must be a non-empty string", f"{field_name}.prompt")

    temperature = section.get("temperature", DEFAULT_ALT_TEXT_TEMPERATURE)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise ConfigError(config_path, "must be a number", f"{field_name}.temperature")

    model = section.get("model")
    if model is not None and (not isinstance(model, str) or ":" not in model):
        raise ConfigError(
            config_path, "must be a 'module:factory' import path", f"{field_name}.model"
        )
    return AltTextConfig(prompt=prompt, temperature=float(temperature), model=model)


def _parse_feeds(config_path: Path, feeds: Any) -> tuple[FeedConfig, ...]:
    if not isinstance(feeds, list):
        raise ConfigError(config_path, "must be a list", "feeds")
    parsed = []
    for item in feeds:
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("path"), str)
            or item.get("type") not in FEED_TYPES
        ):
            raise ConfigError(
                config_path, f"each feed needs a path and a type in {FEED_TYPES}", "feeds"
            )
        try:
            normalize_page_path(item["path"])
        except ValueError as exc:
            raise ConfigError(config_path, str(exc), "feeds") from exc
        parsed.append(FeedConfig(path=item["path"], type=item["type"]))
    return tuple(parsed)
