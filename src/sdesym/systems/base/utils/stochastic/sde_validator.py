# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
SDE Validator - Structural Validation for Stochastic Systems

Validates SDE system definitions including dimension compatibility,
symbol resolution, and noise structure validation.

Validation Checks:
- Independent variable excluded from states and parameters
- Unique states and parameters
- Drift left-hand sides differentiate states w.r.t. the independent variable
- Diffusion rows match the number of drift equations
- Scalar-noise flag only with vector noise
- Closed-world symbol check over drift, diffusion and event equations
- Zero diffusion / wide noise detection (warnings)

Errors are collected and raised together as one StructuralError.
"""

import warnings
from typing import List, Sequence, Set

import sympy as sp
from typing_extensions import TypedDict

from sdesym.systems.base.core.equations import (
    Equation,
    SymbolicContinuousEvent,
    SymbolicDiscreteEvent,
    differentiated_variable,
)
from sdesym.systems.base.core.errors import StructuralError
from sdesym.types.symbolic import SymbolicDiffusion
from sdesym.types.utilities import SymbolicValidationResult


class SDEValidationInfo(TypedDict):
    """
    Type-safe info dictionary for SDE validation results.
    """

    nx: int
    nw: int
    num_parameters: int
    num_events: int
    noise_is_vector: bool
    is_scalar_noise: bool


# ============================================================================
# SDE Validator
# ============================================================================


class SDEValidator:
    """
    Validates stochastic system definitions.

    Examples
    --------
    >>> t, x, sigma = sp.symbols('t x sigma')
    >>> D = Differential(t)
    >>> validator = SDEValidator(
    ...     [Equation(D(x), -x)], (sigma * x,), t, [x], [sigma]
    ... )
    >>> validator.validate().is_valid
    True
    """

    def __init__(
        self,
        eqs: Sequence[Equation],
        noise_eqs: SymbolicDiffusion,
        iv: sp.Symbol,
        unknowns: Sequence[sp.Symbol],
        ps: Sequence[sp.Symbol],
        dependent_ps: Sequence[sp.Symbol] = (),
        continuous_events: Sequence[SymbolicContinuousEvent] = (),
        discrete_events: Sequence[SymbolicDiscreteEvent] = (),
        is_scalar_noise: bool = False,
    ):
        self.eqs = tuple(eqs)
        self.noise_eqs = noise_eqs
        self.iv = iv
        self.unknowns = tuple(unknowns)
        self.ps = tuple(ps)
        self.dependent_ps = tuple(dependent_ps)
        self.continuous_events = tuple(continuous_events)
        self.discrete_events = tuple(discrete_events)
        self.is_scalar_noise = is_scalar_noise

        self.noise_is_vector = not isinstance(noise_eqs, sp.MatrixBase)

        self._errors: List[str] = []
        self._warnings: List[str] = []

    # ========================================================================
    # Public API
    # ========================================================================

    def validate(self, raise_on_error: bool = False) -> SymbolicValidationResult:
        """
        Perform structural validation.

        Parameters
        ----------
        raise_on_error : bool
            If True, raise StructuralError on validation failure

        Returns
        -------
        SymbolicValidationResult
            Validation results with errors, warnings, and info

        Raises
        ------
        StructuralError
            If validation fails and raise_on_error=True
        """
        self._errors = []
        self._warnings = []

        self._validate_independent_variable()
        self._validate_uniqueness()
        self._validate_drift_equations()
        self._validate_noise_dimensions()
        self._validate_scalar_noise()
        self._validate_symbols()
        self._validate_zero_diffusion()

        is_valid = len(self._errors) == 0

        result = SymbolicValidationResult(
            is_valid=is_valid,
            errors=self._errors.copy(),
            warnings=self._warnings.copy(),
            info=self._build_info(),
        )

        if not is_valid and raise_on_error:
            raise StructuralError(self._format_error_message())

        for message in self._warnings:
            warnings.warn(message, UserWarning, stacklevel=3)

        return result

    # ========================================================================
    # Validation Checks - Variables
    # ========================================================================

    def _validate_independent_variable(self):
        if not isinstance(self.iv, sp.Symbol):
            self._errors.append(
                f"Independent variable must be a sp.Symbol, got {type(self.iv).__name__}"
            )
            return

        if self.iv in self.unknowns:
            self._errors.append(
                f"Independent variable {self.iv} must not appear among the states"
            )
        if self.iv in self.ps or self.iv in self.dependent_ps:
            self._errors.append(
                f"Independent variable {self.iv} must not appear among the parameters"
            )

    def _validate_uniqueness(self):
        for label, symbols in (("states", self.unknowns), ("parameters", self.ps)):
            seen: Set[sp.Symbol] = set()
            duplicates = []
            for sym in symbols:
                if sym in seen:
                    duplicates.append(str(sym))
                seen.add(sym)
            if duplicates:
                self._errors.append(f"Duplicate {label}: {sorted(set(duplicates))}")

        overlap = set(self.unknowns) & (set(self.ps) | set(self.dependent_ps))
        if overlap:
            self._errors.append(
                f"Symbols declared as both state and parameter: {sorted(str(s) for s in overlap)}"
            )

    # ========================================================================
    # Validation Checks - Equations
    # ========================================================================

    def _validate_drift_equations(self):
        if len(self.eqs) != len(self.unknowns):
            self._errors.append(
                f"Number of drift equations ({len(self.eqs)}) must match "
                f"number of states ({len(self.unknowns)})"
            )

        for i, eq in enumerate(self.eqs):
            if eq.lhs == 0:
                # algebraic row
                continue
            var = differentiated_variable(eq.lhs, self.iv)
            if var is None:
                self._errors.append(
                    f"Drift equation {i} must have a derivative w.r.t. {self.iv} "
                    f"(or 0) on its left-hand side, got {eq.lhs}"
                )
            elif var not in self.unknowns:
                self._errors.append(
                    f"Drift equation {i} differentiates {var}, which is not a state"
                )

    def _validate_noise_dimensions(self):
        nrows = len(self.noise_eqs) if self.noise_is_vector else self.noise_eqs.shape[0]

        if nrows != len(self.eqs):
            self._errors.append(
                "Noise equations ill-formed. Number of rows must match number of "
                f"drift equations. rows = {nrows} != {len(self.eqs)}"
            )

        if not self.noise_is_vector:
            nw = self.noise_eqs.shape[1]
            if nw < 1:
                self._errors.append("Diffusion must have at least 1 noise source (nw >= 1)")
            if nw > len(self.eqs) > 0:
                self._warnings.append(
                    f"Number of noise sources ({nw}) exceeds state dimension "
                    f"({len(self.eqs)}). This is unusual - typically nw <= nx."
                )

    def _validate_scalar_noise(self):
        if self.is_scalar_noise and not self.noise_is_vector:
            self._errors.append(
                "Noise equations ill-formed. Received a matrix of noise equations of "
                f"shape {self.noise_eqs.shape}, but is_scalar_noise was set to True. "
                "Scalar noise is only compatible with a vector of noise equations."
            )

    def _validate_symbols(self):
        allowed: Set[sp.Symbol] = {self.iv}
        allowed.update(self.unknowns)
        allowed.update(self.ps)
        allowed.update(self.dependent_ps)

        def report(label: str, symbols: Set[sp.Symbol]):
            undefined = symbols - allowed
            if undefined:
                self._errors.append(
                    f"Undefined symbols in {label}: {sorted(str(s) for s in undefined)}"
                )

        drift_symbols: Set[sp.Symbol] = set()
        for eq in self.eqs:
            drift_symbols |= eq.free_symbols
        report("drift", drift_symbols)

        if self.noise_is_vector:
            noise_symbols: Set[sp.Symbol] = set()
            for expr in self.noise_eqs:
                noise_symbols |= sp.sympify(expr).free_symbols
        else:
            noise_symbols = set(self.noise_eqs.free_symbols)
        report("diffusion", noise_symbols)

        event_symbols: Set[sp.Symbol] = set()
        for event in self.continuous_events:
            for eq in event.equations():
                event_symbols |= eq.free_symbols
        for event in self.discrete_events:
            event_symbols |= event.free_symbols
        report("events", event_symbols)

    def _validate_zero_diffusion(self):
        entries = list(self.noise_eqs)
        if entries and all(sp.sympify(e) == 0 for e in entries):
            self._warnings.append(
                "Diffusion term is all zeros - this is an ODE, not an SDE."
            )

    # ========================================================================
    # Info / Formatting
    # ========================================================================

    def _build_info(self) -> SDEValidationInfo:
        if self.noise_is_vector:
            nw = 1 if self.is_scalar_noise else len(self.noise_eqs)
        else:
            nw = self.noise_eqs.shape[1]
        return {
            "nx": len(self.unknowns),
            "nw": nw,
            "num_parameters": len(self.ps) + len(self.dependent_ps),
            "num_events": len(self.continuous_events) + len(self.discrete_events),
            "noise_is_vector": self.noise_is_vector,
            "is_scalar_noise": self.is_scalar_noise,
        }

    def _format_error_message(self) -> str:
        lines = ["SDE validation failed:", "", "Errors:"]
        for error in self._errors:
            lines.append(f"  • {error}")

        if self._warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self._warnings:
                lines.append(f"  • {warning}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"SDEValidator(nx={len(self.unknowns)}, neqs={len(self.eqs)})"


# ============================================================================
# Convenience Functions
# ============================================================================


def check_subsystem_names(names: Sequence[str]):
    """
    Raise StructuralError if subsystem names are not pairwise unique.
    """
    if len(set(names)) != len(names):
        duplicates = sorted({n for n in names if list(names).count(n) > 1})
        raise StructuralError(f"System names must be unique. Duplicates: {duplicates}")


def validate_sde_system(
    eqs: Sequence[Equation],
    noise_eqs: SymbolicDiffusion,
    iv: sp.Symbol,
    unknowns: Sequence[sp.Symbol],
    ps: Sequence[sp.Symbol],
    raise_on_error: bool = False,
    **kwargs,
) -> SymbolicValidationResult:
    """
    Convenience function for validating SDE systems.

    Examples
    --------
    >>> result = validate_sde_system(eqs, noise, t, [x], [sigma])
    >>> if result.is_valid:
    ...     print("Valid SDE system!")
    """
    validator = SDEValidator(eqs, noise_eqs, iv, unknowns, ps, **kwargs)
    return validator.validate(raise_on_error=raise_on_error)


__all__ = [
    "SDEValidator",
    "SDEValidationInfo",
    "check_subsystem_names",
    "validate_sde_system",
]
