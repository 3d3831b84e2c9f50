"""ORM schema for the gamification engine."""
