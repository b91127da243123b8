"""Application bootstrap helpers for the Conspecto study core."""

from .runtime import StudyCore, bootstrap, build_services
from .settings import AppSettings

__all__ = ["AppSettings", "StudyCore", "bootstrap", "build_services"]
