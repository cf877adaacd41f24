"""Parser/serializer strategies for mod configuration files.

Every supported format is flattened into an ordered mapping of key paths
(tuples of names) to leaf values so that the merger can compare files
key-by-key without knowing the format. The set of formats is closed:
strategies are looked up by format tag in :data:`FORMAT_STRATEGIES`.
"""

from __future__ import annotations

import configparser
import json
import re
import tomllib
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import tomli_w
import yaml

from modweave.config.schemas import ConfigFormat
from modweave.core.errors import ConfigParseError

KeyPath = tuple[str, ...]
FlatConfig = dict[KeyPath, Any]


def format_key(key: KeyPath) -> str:
    """Render a key path for log messages and reports."""
    return ".".join(key)


def flatten(data: dict[str, Any], prefix: KeyPath = ()) -> FlatConfig:
    """Flatten nested mappings into key paths. Empty mappings are leaves."""
    flat: FlatConfig = {}
    for key, value in data.items():
        path = (*prefix, str(key))
        if isinstance(value, dict) and value:
            flat.update(flatten(value, path))
        else:
            flat[path] = value
    return flat


def unflatten(flat: FlatConfig) -> dict[str, Any]:
    """Rebuild nested mappings from key paths, preserving order."""
    root: dict[str, Any] = {}
    for path, value in flat.items():
        node = root
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return root


class ConfigFormatStrategy(ABC):
    """Parses and serializes one configuration format."""

    format: ConfigFormat
    extensions: tuple[str, ...] = ()

    @abstractmethod
    def load(self, text: str) -> FlatConfig:
        """Parse text into a flat key-path mapping.

        Raises:
            ConfigParseError: If the text is not valid for this format
        """
        ...

    @abstractmethod
    def dump(self, values: FlatConfig, template: str) -> str:
        """Serialize merged values.

        Args:
            values: Merged key-path mapping (its keys are the template's keys)
            template: Text of the newly shipped file, used to keep layout
                and comments where the format allows it
        """
        ...


class JsonStrategy(ConfigFormatStrategy):
    format: ConfigFormat = "json"
    extensions = (".json",)

    def load(self, text: str) -> FlatConfig:
        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise ConfigParseError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigParseError("JSON config must contain an object")
        return flatten(data)

    def dump(self, values: FlatConfig, template: str) -> str:
        return json.dumps(unflatten(values), indent=2, ensure_ascii=False) + "\n"


class YamlStrategy(ConfigFormatStrategy):
    format: ConfigFormat = "yaml"
    extensions = (".yaml", ".yml")

    def load(self, text: str) -> FlatConfig:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigParseError("YAML config must contain a mapping")
        return flatten(data)

    def dump(self, values: FlatConfig, template: str) -> str:
        return yaml.safe_dump(
            unflatten(values), default_flow_style=False, sort_keys=False, allow_unicode=True
        )


class TomlStrategy(ConfigFormatStrategy):
    format: ConfigFormat = "toml"
    extensions = (".toml",)

    def load(self, text: str) -> FlatConfig:
        try:
            return flatten(tomllib.loads(text))
        except tomllib.TOMLDecodeError as e:
            raise ConfigParseError(f"Invalid TOML: {e}") from e

    def dump(self, values: FlatConfig, template: str) -> str:
        return tomli_w.dumps(unflatten(values))


class IniStrategy(ConfigFormatStrategy):
    """INI / BepInEx .cfg files.

    Keys are ``(section, option)``. Serialization rewrites the values in the
    template text line by line, so comments and ordering of the shipped file
    survive the merge.
    """

    format: ConfigFormat = "ini"
    extensions = (".ini", ".cfg")

    _DEFAULT_SECTION = "\x00defaults"
    _SECTION_RE = re.compile(r"^\s*\[(?P<name>[^\]]+)\]\s*$")
    _OPTION_RE = re.compile(r"^(?P<key>\s*[^=:#;\s\[][^=:]*?)(?P<sep>\s*[=:]\s*)(?P<value>.*)$")

    def _parser(self) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(
            interpolation=None,
            default_section=self._DEFAULT_SECTION,
            strict=False,
        )
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        return parser

    def load(self, text: str) -> FlatConfig:
        parser = self._parser()
        try:
            parser.read_string(text)
        except configparser.Error as e:
            raise ConfigParseError(f"Invalid INI: {e}") from e

        flat: FlatConfig = {}
        for section in parser.sections():
            for option, value in parser.items(section, raw=True):
                flat[(section, option)] = value
        return flat

    def dump(self, values: FlatConfig, template: str) -> str:
        section: str | None = None
        lines: list[str] = []
        for line in template.splitlines(keepends=True):
            body = line.rstrip("\r\n")
            ending = line[len(body) :]
            section_match = self._SECTION_RE.match(body)
            if section_match:
                section = section_match.group("name").strip()
                lines.append(line)
                continue
            option_match = self._OPTION_RE.match(body)
            if section is not None and option_match:
                key = (section, option_match.group("key").strip())
                if key in values:
                    body = (
                        f"{option_match.group('key')}{option_match.group('sep')}{values[key]}"
                    )
            lines.append(body + ending)
        return "".join(lines)


class XmlStrategy(ConfigFormatStrategy):
    """XML files.

    Leaf element text is keyed by its element path; repeated siblings get a
    ``[n]`` index and attributes an ``@name`` suffix. Comments and the
    prolog (XML declaration and leading comments) of the template survive a
    dump.
    """

    format: ConfigFormat = "xml"
    extensions = (".xml",)

    _PROLOG = re.compile(r"\A(?:\s*(?:<\?.*?\?>|<!--.*?-->))*", re.DOTALL)

    def _parse(self, text: str) -> ET.Element:
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            return ET.fromstring(text, parser=parser)
        except ET.ParseError as e:
            raise ConfigParseError(f"Invalid XML: {e}") from e

    @staticmethod
    def _elements(element: ET.Element) -> list[ET.Element]:
        # Comment nodes have a callable tag
        return [child for child in element if isinstance(child.tag, str)]

    def _walk(self, element: ET.Element, path: KeyPath) -> list[tuple[KeyPath, ET.Element]]:
        nodes = [(path, element)]
        children = self._elements(element)
        counts: dict[str, int] = {}
        for child in children:
            counts[child.tag] = counts.get(child.tag, 0) + 1
        seen: dict[str, int] = {}
        for child in children:
            tag = child.tag
            if counts[tag] > 1:
                seen[tag] = seen.get(tag, 0) + 1
                tag = f"{tag}[{seen[tag]}]"
            nodes.extend(self._walk(child, (*path, tag)))
        return nodes

    def load(self, text: str) -> FlatConfig:
        root = self._parse(text)
        flat: FlatConfig = {}
        for path, element in self._walk(root, (root.tag,)):
            for name, value in element.attrib.items():
                flat[(*path, f"@{name}")] = value
            if not self._elements(element):
                flat[path] = (element.text or "").strip()
        return flat

    def dump(self, values: FlatConfig, template: str) -> str:
        root = self._parse(template)
        for path, element in self._walk(root, (root.tag,)):
            for name in element.attrib:
                key = (*path, f"@{name}")
                if key in values:
                    element.set(name, str(values[key]))
            if not self._elements(element) and path in values:
                element.text = str(values[path])
        text = ET.tostring(root, encoding="unicode") + "\n"
        prolog = self._PROLOG.match(template).group(0).strip()
        if prolog:
            text = prolog + "\n" + text
        return text


FORMAT_STRATEGIES: dict[str, ConfigFormatStrategy] = {
    strategy.format: strategy
    for strategy in (IniStrategy(), JsonStrategy(), YamlStrategy(), XmlStrategy(), TomlStrategy())
}


def get_strategy(config_format: str) -> ConfigFormatStrategy:
    """Get the strategy for a format tag.

    Raises:
        ConfigParseError: If the format is not supported
    """
    strategy = FORMAT_STRATEGIES.get(config_format)
    if strategy is None:
        raise ConfigParseError(f"Unsupported config format: {config_format}")
    return strategy


def detect_format(path: Path) -> ConfigFormat:
    """Detect a config format from a file extension.

    Raises:
        ConfigParseError: If the extension is not recognized
    """
    suffix = path.suffix.lower()
    for strategy in FORMAT_STRATEGIES.values():
        if suffix in strategy.extensions:
            return strategy.format
    raise ConfigParseError(f"Unsupported config file type: {path.name}", path=str(path))
