"""
Eight independent analyzers, each a pure function AnalyzerInput -> list[Issue].

They share nothing but the frozen input, so run_analyzers fans them out on
the default thread pool and joins them. One failing analyzer fails the stage.
"""

import asyncio
import logging
from typing import Callable

from models import AnalyzerInput, Issue

from .aeo_geo import analyze_aeo_geo
from .architecture import analyze_architecture
from .indexability import analyze_indexability
from .international import analyze_international
from .on_page import analyze_on_page
from .performance import analyze_performance
from .security import analyze_security
from .structured_data import analyze_structured_data

logger = logging.getLogger("analyzers")

Analyzer = Callable[[AnalyzerInput], list[Issue]]

ANALYZERS: dict[str, Analyzer] = {
    "indexability": analyze_indexability,
    "on_page": analyze_on_page,
    "security": analyze_security,
    "architecture": analyze_architecture,
    "structured_data": analyze_structured_data,
    "performance": analyze_performance,
    "aeo_geo": analyze_aeo_geo,
    "international": analyze_international,
}


async def run_analyzers(data: AnalyzerInput) -> dict[str, list[Issue]]:
    """Run every analyzer concurrently; results keyed by analyzer name."""
    loop = asyncio.get_running_loop()
    names = list(ANALYZERS)
    results = await asyncio.gather(*[
        loop.run_in_executor(None, ANALYZERS[name], data) for name in names
    ])
    by_name = dict(zip(names, results))
    logger.info(
        "Analyzers finished: "
        + ", ".join(f"{name}={len(issues)}" for name, issues in by_name.items())
    )
    return by_name
