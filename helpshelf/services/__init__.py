# Services package

from helpshelf.services.analysis_driver import AnalysisDriver
from helpshelf.services.progress import ProgressStore
from helpshelf.services.session_binder import SessionBinder

__all__ = [
    "AnalysisDriver",
    "ProgressStore",
    "SessionBinder",
]
