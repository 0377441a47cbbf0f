"""FastAPI service layer and job orchestration core."""
