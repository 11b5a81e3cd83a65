"""Pinned-parameter guard — fail-closed integrity check of ceremony inputs.

Runs before any component touches a contribution. Nothing is cached:
every call rehashes the files from disk, so the verifier shares no
trust with the aggregator even though both use this check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ceremony.config import PinnedParameter
from ceremony.crypto.checksum import sha256_file
from ceremony.errors import ParameterIntegrityError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterCheck:
    parameter: PinnedParameter
    size: int
    checksum: str


def check_parameter(param: PinnedParameter) -> ParameterCheck:
    """Verify one pinned parameter: existence, minimum size, reference checksum.

    Raises ParameterIntegrityError on any deviation.
    """
    if not param.path.is_file():
        raise ParameterIntegrityError(f"{param.name} file missing: {param.path}")

    size = param.path.stat().st_size
    if size < param.min_size:
        raise ParameterIntegrityError(
            f"{param.name} file suspiciously small: {size} bytes "
            f"(minimum {param.min_size}): {param.path}"
        )

    actual = sha256_file(param.path)
    if actual != param.sha256:
        raise ParameterIntegrityError(
            f"{param.name} checksum mismatch: expected {param.sha256}, got {actual}"
        )
    return ParameterCheck(parameter=param, size=size, checksum=actual)


def verify_pinned_parameters(params: tuple[PinnedParameter, ...]) -> list[ParameterCheck]:
    """Check every pinned parameter. Raises on the first failure."""
    checks: list[ParameterCheck] = []
    for param in params:
        try:
            check = check_parameter(param)
        except ParameterIntegrityError as exc:
            logger.critical("SECURITY_BREACH: %s", exc)
            raise
        logger.info("SECURITY_OK: %s integrity verified: %s", param.name, check.checksum)
        checks.append(check)
    return checks
