"""
Shared Infrastructure
=====================

Low-level technical concerns shared across modules:
- Structured logging and correlation IDs
"""
