"""Services for the rate limiting gateway."""
