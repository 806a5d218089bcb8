"""
Pydantic models for the media pipeline.
"""
