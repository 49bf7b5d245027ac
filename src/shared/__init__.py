"""
Shared Kernel Module
====================

Shared infrastructure used by every bounded context.

Architecture Pattern: Modular Monolith
- Each module (workorders) is a bounded context
- Shared kernel contains only generic infrastructure (logging, middleware)

DO NOT add work order business logic to the shared kernel.
"""

__version__ = "1.0.0"
