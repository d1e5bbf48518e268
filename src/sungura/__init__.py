"""
Sungura: offline cache and farm-record reconciliation for the Sungura Master
rabbit farm app.
"""

__version__ = "0.1.0"
