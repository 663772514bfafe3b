"""
Inventory ledger for blood-unit stock.
"""
