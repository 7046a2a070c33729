"""SonarQube coverage provider for Screwdriver builds."""

__version__ = "1.0.0"
