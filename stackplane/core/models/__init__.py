"""
Domain models — Pydantic types for plans and runtime intents.

All models are re-exported here for convenient access:

    from stackplane.core.models import CompositionStackPlan, Intent, Receipt
"""

from stackplane.core.models.intent import Intent, IntentKind, Receipt
from stackplane.core.models.plan import (
    FINGERPRINT_LABEL,
    CanonicalService,
    CanonicalStackPlan,
    CompositionStackPlan,
    DeployBlock,
    DirectoryEntry,
    DirectoryLayout,
    NetworkDefinition,
    OrchestratedService,
    OrchestratedStackPlan,
    Placement,
    PortMapping,
    SecretAddress,
    SecretMaterial,
    SecretMount,
    StackMode,
    StackState,
)

__all__ = [
    "FINGERPRINT_LABEL",
    # plan.py
    "CanonicalService",
    "CanonicalStackPlan",
    "CompositionStackPlan",
    "DeployBlock",
    "DirectoryEntry",
    "DirectoryLayout",
    # intent.py
    "Intent",
    "IntentKind",
    "NetworkDefinition",
    "OrchestratedService",
    "OrchestratedStackPlan",
    "Placement",
    "PortMapping",
    "Receipt",
    "SecretAddress",
    "SecretMaterial",
    "SecretMount",
    "StackMode",
    "StackState",
]
