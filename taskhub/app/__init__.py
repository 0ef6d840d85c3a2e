"""Application factory, lifespan and background task tracking."""
