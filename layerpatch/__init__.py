from layerpatch.config import ApplyOptions
from layerpatch.patches.orchestrator import apply_all

__version__ = "0.1.0"

__all__ = ["ApplyOptions", "apply_all", "__version__"]
