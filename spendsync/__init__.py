"""
SpendSync - Source Package

A financial rollup and realtime reconciliation engine for a shared
(family) expense tracker.

DESIGN PRINCIPLES:
1. Money never drifts: Decimal arithmetic, 2 digits, half up
2. The record id is the only reconciliation key
3. The local log reflects a write only after the store acknowledged it
4. Realtime failures degrade, they never crash
5. Storage and realtime feed are swappable
"""

__version__ = "1.0.0"
__author__ = "SpendSync Team"
