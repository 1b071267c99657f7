from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ContributionStep(StrEnum):
    LOCATION = "location"
    BENEFIT = "benefit"
    VERIFY = "verify"
    DONE = "done"


class BenefitType(StrEnum):
    FOOD = "food"
    HEALTH = "health"
    COMMUNITY = "community"


BENEFIT_LABELS: dict[BenefitType, str] = {
    BenefitType.FOOD: "Food / SNAP",
    BenefitType.HEALTH: "Healthcare / Medicaid",
    BenefitType.COMMUNITY: "Community Resource",
}


@dataclass(frozen=True, slots=True)
class Contribution:
    location: str
    benefit: BenefitType


class ContributionForm:
    """Crowd-sourced resource submission, gated on a human verdict.

    location -> benefit -> verify -> done. The verify step only advances
    once ``apply_verification(True)`` is received from the challenge.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._step = ContributionStep.LOCATION
        self._location = ""
        self._benefit: BenefitType | None = None
        self._verified = False
        self._submitted: Contribution | None = None

    @property
    def step(self) -> ContributionStep:
        return self._step

    @property
    def location(self) -> str:
        return self._location

    @property
    def benefit(self) -> BenefitType | None:
        return self._benefit

    @property
    def verified(self) -> bool:
        return self._verified

    @property
    def submitted(self) -> Contribution | None:
        return self._submitted

    def set_location(self, text: str) -> None:
        if self._step is ContributionStep.LOCATION:
            self._location = text

    def choose_benefit(self, benefit: BenefitType | str) -> None:
        benefit = BenefitType(benefit)
        if self._step is ContributionStep.BENEFIT:
            self._benefit = benefit

    def next(self) -> bool:
        if self._step is ContributionStep.LOCATION and self._location.strip():
            self._step = ContributionStep.BENEFIT
            return True
        if self._step is ContributionStep.BENEFIT and self._benefit is not None:
            self._step = ContributionStep.VERIFY
            return True
        return False

    def apply_verification(self, is_human: bool) -> bool:
        """Receive the challenge verdict. Returns True if the form was submitted."""

        if self._step is not ContributionStep.VERIFY:
            return False
        self._verified = bool(is_human)
        if not self._verified:
            return False
        assert self._benefit is not None
        self._submitted = Contribution(location=self._location.strip(), benefit=self._benefit)
        self._step = ContributionStep.DONE
        return True
