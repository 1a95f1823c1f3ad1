# src/ode_engine/config.py
"""Configuration models for ode_engine runs.

This module defines the pydantic-facing configuration object used for
YAML/dict-driven runs and translates it into a native :class:`RunConfig`.

Notes:
    - Unknown fields are allowed and ignored (`extra="allow"`), so a settings
      block can live inside a larger configuration file.
    - Stepper names accept the same aliases as :meth:`Stepper.parse`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .integrator import RunConfig
from .linalg import Norm
from .nonlinear import NewtonConfig
from .steppers import Stepper

_YAML_ROOT_ERROR = "Expected a mapping at the top of {path}; got {typ}"
_YAML_SECTION_ERROR = "Section {section!r} not found in {path}"


class IntegrationSettings(BaseModel):
    """Configuration schema for an integration run.

    This model mirrors RunConfig and NewtonConfig fields with YAML-friendly
    types and validation.
    """

    model_config = ConfigDict(extra="allow")

    stepper: str = Field(
        default="rk4",
        description="Integration method (euler, rk4, backward-euler, gl4)",
    )

    step_size: float | None = Field(
        default=None,
        gt=0.0,
        description="Fixed step size; None defers to the problem",
    )

    # Newton controls (implicit steppers only)
    tol: float = Field(default=1e-10, gt=0.0)
    max_iter: int = Field(default=50, ge=1)
    norm: Literal["l1", "l2", "lp", "linf"] = "l2"
    p: float = Field(default=2.0, ge=1.0)
    predictor: Literal["previous", "explicit"] = "previous"

    strict: bool = Field(
        default=False,
        description="Raise instead of warning on ignored inputs",
    )

    @field_validator("stepper")
    @classmethod
    def _check_stepper(cls, value: str) -> str:
        return Stepper.parse(value).value

    @classmethod
    def from_yaml(
        cls, path: str | Path, section: str | None = None
    ) -> IntegrationSettings:
        """Load settings from a YAML file.

        Args:
            path: YAML file path.
            section: Optional top-level key holding the settings mapping.

        Raises:
            ValueError: If the document (or section) is not a mapping.

        Returns:
            Validated settings.
        """
        path = Path(path)
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if section is not None:
            if not isinstance(data, dict) or section not in data:
                raise ValueError(_YAML_SECTION_ERROR.format(section=section, path=path))
            data = data[section]
        if not isinstance(data, dict):
            msg = _YAML_ROOT_ERROR.format(path=path, typ=type(data).__name__)
            raise ValueError(msg)
        return cls.model_validate(data)

    def to_newton_config(self) -> NewtonConfig:
        """Convert the Newton fields to a native NewtonConfig."""
        return NewtonConfig(
            tol=self.tol,
            max_iter=self.max_iter,
            norm=Norm(self.norm),
            p=self.p,
        )

    def to_run_config(self) -> RunConfig:
        """Convert this config to a native RunConfig.

        Returns:
            Fully constructed RunConfig instance.
        """
        return RunConfig(
            stepper=Stepper.parse(self.stepper),
            step_size=self.step_size,
            newton=self.to_newton_config(),
            predictor=self.predictor,
            strict=self.strict,
        )
