"""LifeBox alarm rule evaluation and reaction dispatch service."""
