"""GCP project and region lookup."""

import logging
import random
from typing import Iterable, Optional

from common import run_command
from errors import ConfigurationError

logger = logging.getLogger(__name__)


def list_regions(project: str, timeout: int = 60) -> list[str]:
    """List regions available to a project via the gcloud CLI.

    Raises:
        ConfigurationError: If gcloud is missing or the call fails
    """
    cmd = ['gcloud', 'compute', 'regions', 'list',
           f'--project={project}', '--format=value(name)']
    rc, out, err = run_command(cmd, timeout=timeout)
    if rc != 0:
        raise ConfigurationError(f"gcloud region lookup failed for {project}: {err.strip()}")
    return [line.strip() for line in out.splitlines() if line.strip()]


def get_random_region(
    project: str,
    approved: Iterable[str],
    forbidden: Iterable[str] = (),
    query: bool = False,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick a random region from approved minus forbidden.

    Args:
        project: GCP project id (only used when ``query`` is set)
        approved: Candidate regions
        forbidden: Regions never chosen
        query: Intersect candidates with regions the project can use
        rng: Random source (tests pass a seeded instance)
    """
    approved = list(approved)
    forbidden_set = set(forbidden)
    candidates = [r for r in approved if r not in forbidden_set]
    if query:
        available = set(list_regions(project))
        candidates = [r for r in candidates if r in available]
    if not candidates:
        raise ConfigurationError(
            f"No region left to choose from (approved={list(approved)}, forbidden={sorted(forbidden_set)})"
        )
    region = (rng or random.SystemRandom()).choice(sorted(candidates))
    logger.info(f"Using region {region}")
    return region
