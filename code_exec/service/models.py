"""
Pydantic models for tool definitions.
Module: code_exec/service/models.py
"""

import json
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from adapters.llm.base import ConfigurationError, ToolDeclaration


class Tool(BaseModel):
    """A user-defined tool: schema-described, backed by a Python body."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique tool id")
    name: str = Field(..., min_length=1, description="Dispatch key sent to the model")
    description: str = Field(default="", description="Human-readable description")
    parameters: str = Field(
        default='{"type": "OBJECT", "properties": {}}',
        description="JSON text of the parameter schema",
    )
    implementation: str = Field(
        default="return None", description="Python function body receiving `args`"
    )
    enabled: bool = Field(default=True, description="Whether the tool is offered to the model")

    def parse_parameters(self) -> Dict[str, Any]:
        """
        Parse the parameter schema text.

        Returns:
            Parsed schema

        Raises:
            ConfigurationError: If the text is not a JSON object
        """
        try:
            parsed = json.loads(self.parameters)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid parameters for tool '{self.name}': {e}")

        if not isinstance(parsed, dict):
            raise ConfigurationError(
                f"Invalid parameters for tool '{self.name}': schema must be a JSON object"
            )
        return parsed

    def to_declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=self.parse_parameters(),
        )


class ToolRequest(BaseModel):
    """Request body to create or replace a tool."""

    name: str = Field(..., min_length=1, description="Tool name")
    description: str = Field(default="", description="Tool description")
    parameters: Any = Field(
        default_factory=lambda: {"type": "OBJECT", "properties": {}},
        description="Parameter schema as JSON text or an object",
    )
    implementation: str = Field(default="return None", description="Python function body")
    enabled: bool = Field(default=True)

    def to_tool(self, tool_id: Optional[str] = None) -> Tool:
        parameters = self.parameters
        if not isinstance(parameters, str):
            parameters = json.dumps(parameters, indent=2)

        fields: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
            "implementation": self.implementation,
            "enabled": self.enabled,
        }
        if tool_id:
            fields["id"] = tool_id
        return Tool(**fields)


class ToolEnabledRequest(BaseModel):
    """Request body to enable or disable a tool."""

    enabled: bool
