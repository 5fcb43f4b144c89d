"""File manager HTTP API served next to the lifecycle manager."""
