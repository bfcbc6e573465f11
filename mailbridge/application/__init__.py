"""Application layer: connection health rules and the ingestion, outbound,
watchdog and re-drive use cases.
"""
