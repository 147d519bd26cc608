"""
Core package of the ingestion engine.
"""
