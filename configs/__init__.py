"""Configuration modules for azstore."""
