"""
Tool Registry for managing user-defined tools.
Module: code_exec/service/registry.py

Holds tool definitions in insertion order and validates them. The turn
orchestrator takes a read-only snapshot of the enabled tools at the start
of every loop; edits made afterwards do not affect that loop.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from adapters.llm.base import ConfigurationError, ToolDeclaration

from .models import Tool

logger = logging.getLogger(__name__)


class ToolRegistryError(Exception):
    """Base exception for tool registry errors."""

    pass


class UnknownToolError(ToolRegistryError):
    """Raised when a tool id is not in the registry."""

    pass


def normalize_schema(schema: Any) -> Any:
    """
    Lower-case Gemini-style type names (``"OBJECT"``, ``"STRING"``) so the
    schema can be checked against the JSON Schema meta-schema.
    """
    if isinstance(schema, dict):
        normalized = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                normalized[key] = value.lower()
            elif key == "type" and isinstance(value, list):
                normalized[key] = [v.lower() if isinstance(v, str) else v for v in value]
            else:
                normalized[key] = normalize_schema(value)
        return normalized
    if isinstance(schema, list):
        return [normalize_schema(item) for item in schema]
    return schema


class ToolRegistry:
    """Registry for managing tool definitions."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        """
        Initialize the tool registry.

        Args:
            tools: Initial tools, stored without validation
        """
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self._tools[tool.id] = tool.model_copy(deep=True)

    @classmethod
    def with_defaults(cls) -> "ToolRegistry":
        """Create a registry seeded with the built-in catalog."""
        from .defaults import default_tools

        return cls(default_tools())

    @classmethod
    def from_catalog(cls, path: Optional[Union[str, Path]] = None) -> "ToolRegistry":
        """
        Create a registry from a YAML catalog, or the built-in one.

        Raises:
            ConfigurationError: If the catalog file is missing or malformed
        """
        if not path:
            return cls.with_defaults()
        registry = cls()
        registry.load_yaml(path)
        return registry

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    # ========================================================================
    # Queries
    # ========================================================================

    def list_tools(self) -> List[Tool]:
        """Every tool, enabled or not, in insertion order."""
        return [tool.model_copy(deep=True) for tool in self._tools.values()]

    def enabled_tools(self) -> List[Tool]:
        """Enabled tools in insertion order, as independent copies."""
        return [tool.model_copy(deep=True) for tool in self._tools.values() if tool.enabled]

    def snapshot(self) -> Dict[str, Tool]:
        """
        Map enabled tool names to tools.

        The result is detached from the registry: later edits, deletions or
        toggles do not show through. When a draft left two enabled tools
        with the same name, the first one wins.

        Returns:
            Tools keyed by name
        """
        snapshot: Dict[str, Tool] = {}
        for tool in self.enabled_tools():
            if tool.name in snapshot:
                logger.warning(f"Duplicate enabled tool name '{tool.name}', keeping the first")
                continue
            snapshot[tool.name] = tool
        return snapshot

    def find_by_name(self, name: str) -> Optional[Tool]:
        for tool in self._tools.values():
            if tool.enabled and tool.name == name:
                return tool.model_copy(deep=True)
        return None

    def get(self, tool_id: str) -> Tool:
        """
        Get a tool by id.

        Args:
            tool_id: Tool id

        Returns:
            Tool

        Raises:
            UnknownToolError: If no tool has this id
        """
        if tool_id not in self._tools:
            raise UnknownToolError(f"Tool '{tool_id}' not found in registry")
        return self._tools[tool_id].model_copy(deep=True)

    def declarations(self, tools: Optional[Iterable[Tool]] = None) -> List[ToolDeclaration]:
        """
        Build model declarations for enabled tools.

        Tools whose parameter schema does not parse are skipped with a
        warning; they stay in the registry and remain editable.

        Args:
            tools: Tools to declare (default: the registry's enabled tools)

        Returns:
            Declarations in order
        """
        source = list(tools) if tools is not None else self.enabled_tools()
        declarations: List[ToolDeclaration] = []
        seen = set()

        for tool in source:
            if not tool.enabled or tool.name in seen:
                continue
            try:
                declarations.append(tool.to_declaration())
            except ConfigurationError as e:
                logger.warning(f"Skipping tool '{tool.name}' with malformed schema: {e}")
                continue
            seen.add(tool.name)

        return declarations

    # ========================================================================
    # Validation
    # ========================================================================

    def validate_tool(self, tool: Tool) -> None:
        """
        Validate a tool before it is stored.

        Args:
            tool: Tool to validate

        Raises:
            ConfigurationError: If the schema is malformed or the name is
                already used by another enabled tool
        """
        schema = tool.parse_parameters()

        try:
            Draft7Validator.check_schema(normalize_schema(schema))
        except SchemaError as e:
            raise ConfigurationError(
                f"Invalid parameters for tool '{tool.name}': {e.message}"
            ) from e

        if tool.enabled:
            self._check_unique_name(tool)

    def _check_unique_name(self, tool: Tool) -> None:
        for other in self._tools.values():
            if other.id != tool.id and other.enabled and other.name == tool.name:
                raise ConfigurationError(
                    f"Another enabled tool is already named '{tool.name}'"
                )

    # ========================================================================
    # Mutations
    # ========================================================================

    def register(self, tool: Tool, validate: bool = True) -> Tool:
        """
        Add a tool.

        Args:
            tool: Tool to add
            validate: Reject malformed tools (``False`` stores a draft)

        Returns:
            The stored tool

        Raises:
            ConfigurationError: If validation fails
            ToolRegistryError: If the id is already registered
        """
        if tool.id in self._tools:
            raise ToolRegistryError(f"Tool '{tool.id}' is already registered")
        if validate:
            self.validate_tool(tool)

        self._tools[tool.id] = tool.model_copy(deep=True)
        logger.info(f"Registered tool: {tool.name} ({tool.id})")
        return tool.model_copy(deep=True)

    def update(self, tool: Tool, validate: bool = True) -> Tool:
        """
        Replace a tool, keeping its position.

        Args:
            tool: New definition, matched by id
            validate: Reject malformed tools (``False`` stores a draft)

        Returns:
            The stored tool

        Raises:
            ConfigurationError: If validation fails
            UnknownToolError: If the id is not registered
        """
        if tool.id not in self._tools:
            raise UnknownToolError(f"Tool '{tool.id}' not found in registry")
        if validate:
            self.validate_tool(tool)

        self._tools[tool.id] = tool.model_copy(deep=True)
        logger.info(f"Updated tool: {tool.name} ({tool.id})")
        return tool.model_copy(deep=True)

    def delete(self, tool_id: str) -> Tool:
        if tool_id not in self._tools:
            raise UnknownToolError(f"Tool '{tool_id}' not found in registry")
        removed = self._tools.pop(tool_id)
        logger.info(f"Deleted tool: {removed.name} ({tool_id})")
        return removed

    def set_enabled(self, tool_id: str, enabled: bool) -> Tool:
        """
        Enable or disable a tool.

        Raises:
            ConfigurationError: If enabling would duplicate an enabled name
            UnknownToolError: If the id is not registered
        """
        tool = self.get(tool_id)
        tool.enabled = enabled
        if enabled:
            self._check_unique_name(tool)

        self._tools[tool_id] = tool
        logger.info(f"{'Enabled' if enabled else 'Disabled'} tool: {tool.name}")
        return tool.model_copy(deep=True)

    def reset(self, tools: Iterable[Tool] = ()) -> None:
        """Replace the whole catalog without validation."""
        self._tools = {tool.id: tool.model_copy(deep=True) for tool in tools}

    # ========================================================================
    # Catalog files
    # ========================================================================

    def load_yaml(self, path: Union[str, Path], validate: bool = True) -> List[Tool]:
        """
        Register tools from a YAML catalog file.

        The file holds a list of tool mappings, or a mapping with a
        ``tools`` list. ``parameters`` may be a mapping or JSON text.

        Args:
            path: Catalog file path
            validate: Validate each tool before it is stored

        Returns:
            Tools registered from the file

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Tool catalog not found: {path}")

        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid tool catalog {path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("tools")
        if not isinstance(data, list):
            raise ConfigurationError(f"Tool catalog {path} must contain a list of tools")

        loaded: List[Tool] = []
        for index, entry in enumerate(data):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Tool entry {index} in {path} is not a mapping")

            fields = dict(entry)
            parameters = fields.get("parameters")
            if parameters is not None and not isinstance(parameters, str):
                fields["parameters"] = json.dumps(parameters, indent=2)

            try:
                tool = Tool(**fields)
            except ValueError as e:
                raise ConfigurationError(f"Tool entry {index} in {path} is invalid: {e}") from e

            loaded.append(self.register(tool, validate=validate))

        logger.info(f"Loaded {len(loaded)} tools from {path}")
        return loaded
