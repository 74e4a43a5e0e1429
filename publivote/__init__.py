"""Publications, tags, images and voting over FastAPI + SQLAlchemy."""
