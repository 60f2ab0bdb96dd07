"""Service layer between the API routers and the orchestration core."""
