"""Feature management service package."""
