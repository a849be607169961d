"""
API routes, one router per game plus account, catalog and maintenance routes.

Every router declares its own feature prefix and is mounted under /api/v1 in
casino_settlement.main.
"""
