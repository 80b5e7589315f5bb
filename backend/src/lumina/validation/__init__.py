"""Validation: rule layers, rule checks and the validation engine."""

from lumina.validation.checks import RuleRegistry, rule
from lumina.validation.engine import ValidationEngine, ValidationResult
from lumina.validation.rules import PerRoleRules, RuleSet, UniformRules

__all__ = [
    "PerRoleRules",
    "RuleRegistry",
    "RuleSet",
    "UniformRules",
    "ValidationEngine",
    "ValidationResult",
    "rule",
]
