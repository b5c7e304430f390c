"""
Household Sync - Source Package

A local-first coordination layer for shared household records
(shopping, pantry, chores, events and shared expenses).

DESIGN PRINCIPLES:
1. Local edits are visible immediately, remote confirmation follows
2. Every optimistic change is either confirmed or rolled back
3. Failures surface as a message, never as a crash
4. Every step is auditable
5. The remote store is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Sync Team"
