"""Installations: the claims recorded against one named installation."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .claim import ACTION_INSTALL, Claim, ClaimError
from .result import STATUS_UNKNOWN, Result


def _by_id(item: Claim | Result) -> str:
    return item.id


class Installation:
    """A named installation with its claims kept sorted by id."""

    def __init__(self, name: str, claims: Iterable[Claim] | None = None) -> None:
        self.name = name
        self.claims: list[Claim] = sorted(claims or [], key=_by_id)
        for claim in self.claims:
            if claim.results is not None:
                claim.results.sort(key=_by_id)

    def __repr__(self) -> str:
        return f"Installation(name={self.name!r}, claims={len(self.claims)})"

    def installation_timestamp(self) -> datetime | None:
        """Return the creation time of the first install claim."""
        if not self.claims:
            raise ClaimError(f"the installation {self.name} has no claims")
        for claim in self.claims:
            if claim.action == ACTION_INSTALL:
                return claim.created
        raise ClaimError(f"the installation {self.name} has never been installed")

    def last_claim(self) -> Claim:
        """Return the most recent claim."""
        if not self.claims:
            raise ClaimError(f"the installation {self.name} has no claims")
        return self.claims[-1]

    def last_result(self) -> Result:
        """Return the most recent result of the most recent claim."""
        claim = self.last_claim()
        results = claim.results
        if results is None:
            raise ClaimError("the last claim does not have any results loaded")
        if not results:
            raise ClaimError("the last claim has no results")
        return results[-1]

    def last_status(self) -> str:
        """Return the status of the last result, or "unknown"."""
        try:
            return self.last_result().status
        except ClaimError:
            return STATUS_UNKNOWN


def sort_by_name(installations: Iterable[Installation]) -> list[Installation]:
    """Return the installations ordered by name."""
    return sorted(installations, key=lambda installation: installation.name)


def sort_by_modified(installations: Iterable[Installation]) -> list[Installation]:
    """Return the installations ordered by their most recent claim, oldest first."""
    installations = list(installations)
    for installation in installations:
        installation.claims.sort(key=_by_id)
    return sorted(installations, key=lambda installation: installation.claims[-1].id)