"""
Scripts Package.

Operational scripts for the chat pipeline.

Scripts:
- bootstrap_db: Create the database schema
- run_aggregation: One-shot analytics rollups for cron
"""

# Scripts are meant to be run directly, not imported
