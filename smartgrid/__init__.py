# =======================================================================================
# smartgrid/__init__.py - Package Initialization
# =======================================================================================
"""
SmartGrid Kit Readiness Service

Keeps the operational status of RFID-tagged emergency backpacks consistent
with their master layout, and runs the scan-out / scan-in pouch exchange.
"""

__version__ = "1.0.0"
__author__ = "SmartGrid Team"
