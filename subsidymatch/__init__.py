"""SubsidyMatch: ensemble scoring and ranking of subsidy programs against company profiles."""

__version__ = "0.1.0"
