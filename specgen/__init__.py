"""specgen - specification intelligence and execution core."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "analyzer",
    "config",
    "engine",
    "errors",
    "formatter",
    "models",
    "plan_parser",
    "planner",
    "relationships",
    "specgen_logging",
    "store",
    "workflow",
]
