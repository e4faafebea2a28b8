"""FastAPI application for Ward Assist Relay."""
