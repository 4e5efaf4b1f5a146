"""Configuration loading and validation for bluectl."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluectl.core.errors import ConfigError
from bluectl.core.model import AdapterSelector, UnknownClassPolicy

ENV_DEVICE_ID = "BLUECTL_DEVICE_ID"
ENV_DEVICE_ADDRESS = "BLUECTL_DEVICE_ADDRESS"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


# Device addresses such as 12:34:56:12:34:56 must stay strings, not base-60 ints.
UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:int"
    ]

UniqueKeyLoader.add_implicit_resolver(
    "tag:yaml.org,2002:int",
    re.compile(r"^[-+]?[0-9]+$"),
    list("-+0123456789"),
)


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    selector: AdapterSelector = field(default_factory=AdapterSelector)
    unknown_class_policy: UnknownClassPolicy = UnknownClassPolicy.IGNORE
    source: Path | None = None


def _load_schema_validator() -> Any:
    schema_text = resources.files("bluectl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bluectl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_settings(doc: dict[str, Any], source: Path | None) -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    adapter = doc.get("adapter", {})
    device_id = adapter.get("id")
    return Settings(
        selector=AdapterSelector(
            device_id=str(device_id) if device_id is not None else None,
            device_address=adapter.get("address"),
        ),
        unknown_class_policy=UnknownClassPolicy(doc.get("unknown_class_policy", "ignore")),
        source=source,
    )


def load_settings(
    *,
    device_id: str | None = None,
    device_address: str | None = None,
) -> Settings:
    """Read the config file, then apply environment and explicit overrides.

    An explicit id or address replaces the whole selector from lower layers,
    so a configured address never shadows an id given on the command line.
    """
    path = config_path()
    if path.is_file():
        settings = _build_settings(_read_yaml(path), path)
        LOGGER.debug("Loaded configuration from %s", path)
    else:
        settings = Settings()

    env_id = os.environ.get(ENV_DEVICE_ID)
    env_address = os.environ.get(ENV_DEVICE_ADDRESS)
    if env_id or env_address:
        settings = Settings(
            selector=AdapterSelector(device_id=env_id or None, device_address=env_address or None),
            unknown_class_policy=settings.unknown_class_policy,
            source=settings.source,
        )

    if device_id is not None or device_address is not None:
        settings = Settings(
            selector=AdapterSelector(device_id=device_id, device_address=device_address),
            unknown_class_policy=settings.unknown_class_policy,
            source=settings.source,
        )
    return settings
