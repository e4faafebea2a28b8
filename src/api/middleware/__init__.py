"""HTTP middleware for Ward Assist Relay."""
