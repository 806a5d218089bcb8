"""Reelcutter: media pipeline service for short captioned vertical clips."""
