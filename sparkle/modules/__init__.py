"""Gamification domain modules. Each subpackage owns one slice of the engine."""
