"""ORM models for automations and their runs."""

from funding_batch.models.automation import AutomationModel, AutomationRunModel

__all__ = ["AutomationModel", "AutomationRunModel"]
