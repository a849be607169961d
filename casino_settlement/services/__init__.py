"""
Services module for settlement and shared business logic.

This module organizes services into:
- games: One settlement service per game type
- ledger_service: Balances, inventory and the transaction log
- item_catalog: TTL-cached item catalog
- outcomes: Random outcome generation
- settlement: Transaction scope and at-most-once settlement records
- sweeper_service: Expiry sweeps run by the scheduler
"""
