"""Weekly timetable generation: constraint model, backtracking search and multi-trial optimizer."""
from .config import EngineConfig, load_config
from .service import generate, optimize

__all__ = ["EngineConfig", "load_config", "generate", "optimize"]
