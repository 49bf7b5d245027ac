"""
Work Order Lifecycle Module
===========================

Bounded Context for maintenance work orders and their SLA clock.

Responsibilities:
- Seed the SLA deadline of new orders from priority and schedule
- Validate status changes against the forward-only workflow
- Keep the pause-aware SLA clock consistent across transitions
- Persist each lifecycle update atomically
- Notify cache, search and notification collaborators on a best-effort basis
- Sweep for overdue orders and notify once per renotify window
"""

__version__ = "1.0.0"
