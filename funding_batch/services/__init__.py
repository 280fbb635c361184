"""Scheduler and automation management services."""

from funding_batch.services.automation_service import AutomationService
from funding_batch.services.scheduler import NO_AUTOMATIONS_DUE, AutomationScheduler

__all__ = ["AutomationScheduler", "AutomationService", "NO_AUTOMATIONS_DUE"]
