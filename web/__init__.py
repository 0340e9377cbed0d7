"""Web interface for the signage asset manager."""
