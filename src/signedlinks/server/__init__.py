"""Reference HTTP service for signed links."""
