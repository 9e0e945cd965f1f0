"""Power Monitor MCP Server.

Grid and DG availability tracking and midnight-to-midnight daily consumption
reconciled from cumulative meter readings scraped from the utility portal.
"""

__version__ = "0.1.0"
