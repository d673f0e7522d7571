"""
SynPat External Tools
Locate and run the command-line converters (wkhtmltopdf, ghostscript).
"""

import logging
import os
import shutil
import subprocess
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120


def find_executable(candidates: Iterable[str]) -> Optional[str]:
    """First candidate that is an executable file or resolves on PATH"""
    for candidate in candidates or []:
        if not candidate:
            continue
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
        resolved = shutil.which(candidate)
        if resolved:
            return resolved
    return None


def run_tool(argv: List[str], timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Run a tool to completion; True iff it exited with code 0"""
    logger.debug(f"Running: {' '.join(argv)}")
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"{os.path.basename(argv[0])} timed out after {timeout}s")
        return False
    except OSError as e:
        logger.warning(f"Could not run {argv[0]}: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"{os.path.basename(argv[0])} exited with {result.returncode}: "
                       f"{(result.stderr or '').strip()[:500]}")
        return False
    return True
