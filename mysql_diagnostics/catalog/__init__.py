"""诊断探针目录模块"""

from .builtin import BUILTIN_PROBES, CATALOG_VERSION, build_default_catalog
from .registry import ProbeCatalog

__all__ = ['ProbeCatalog', 'BUILTIN_PROBES', 'CATALOG_VERSION', 'build_default_catalog']
