"""External platform integrations."""
