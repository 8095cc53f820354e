from typing import Any, Dict, List

import jsonschema
from pydantic import BaseModel, Field

from agent_mesh.domain.models.llm import ToolSpec


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ToolParameterValidator:
    """JSON Schema validation of tool arguments"""

    @staticmethod
    def validate_tool_call(tool: ToolSpec, parameters: Dict[str, Any]) -> ValidationResult:
        if not isinstance(parameters, dict):
            return ValidationResult(is_valid=False, errors=["validation failed: arguments must be an object"])

        try:
            jsonschema.validate(parameters, tool.input_schema)
            return ValidationResult(is_valid=True)

        except jsonschema.ValidationError as e:
            return ValidationResult(is_valid=False, errors=[f"validation failed: {e.message}"])
        except jsonschema.SchemaError as e:
            # Unusable remote schemas are reported, not enforced
            return ValidationResult(is_valid=True, errors=[f"schema ignored: {e.message}"])
