"""Background jobs for the login store."""
