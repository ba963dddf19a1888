"""
Experiment models: GET /v1/experiments.

The endpoint answers in one of two shapes:
  {"assigned_variants": {"checkout_flow": "b"}}           server-assigned
  {"experiments": [{"id": "checkout_flow", "variants": ["a", "b"]}]}
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ExperimentDefinition(BaseModel):
    id: str
    variants: list[str] = Field(default_factory=list)


class ExperimentsResult(BaseModel):
    success: bool
    assigned_variants: Optional[dict[str, str]] = None
    experiments: list[ExperimentDefinition] = Field(default_factory=list)

    @classmethod
    def from_response(cls, data: Any) -> "ExperimentsResult":
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        assigned = data.get("assigned_variants")
        if assigned is not None:
            assigned = {str(k): str(v) for k, v in assigned.items()}
        return cls(
            success=True,
            assigned_variants=assigned,
            experiments=[ExperimentDefinition.model_validate(e) for e in data.get("experiments") or []],
        )

    def definition(self, experiment_id: str) -> Optional[ExperimentDefinition]:
        for exp in self.experiments:
            if exp.id == experiment_id:
                return exp
        return None
