"""Services for the media pipeline."""
