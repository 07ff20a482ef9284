"""
Vulnerability scoring service.
Calls the registry's scoring endpoints when reachable, keeps the last assessment per
person on the device, and scores locally with the same weights when offline.
"""
import logging
from typing import List, Optional, Union

from pydantic import ValidationError

from ..models.assessment import AssessmentSource, VulnerabilityAssessment, WeightingProfile
from ..models.records import HouseholdRecord, PersonRecord
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore
from .registry_client import RegistryClient, RemoteServiceError
from .vulnerability_engine import DEFAULT_WEIGHTING_PROFILE, VulnerabilityEngine

logger = logging.getLogger(__name__)


class VulnerabilityScoringService:
    def __init__(
        self,
        client: RegistryClient,
        store: LocalStore,
        engine: Optional[VulnerabilityEngine] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        persist_profile: bool = True,
    ):
        self.client = client
        self.store = store
        self.engine = engine or VulnerabilityEngine()
        self.monitor = monitor
        self.persist_profile = persist_profile
        self._profile: Optional[WeightingProfile] = None
        self._profile_is_fallback = False
        if monitor is not None:
            monitor.subscribe(self._on_online)

    # ------------------------------------------------------------------
    # Remote scoring
    # ------------------------------------------------------------------

    async def calculate_remote(self, person_id: str, force_recalculate: bool = False) -> VulnerabilityAssessment:
        """
        Ask the backend for a person's assessment.

        Falls back to the last cached assessment (tagged LOCAL_FALLBACK) when the call
        fails. Re-raises the RemoteServiceError when nothing is cached.
        """
        try:
            data = await self.client.calculate_assessment(person_id, force_recalculate)
            assessment = self._parse_remote(data, person_id)
        except RemoteServiceError as exc:
            cached = await self.get_cached(person_id)
            if cached is None:
                logger.warning("Remote scoring failed for %s and no cached assessment: %s", person_id, exc)
                raise
            logger.info("Remote scoring failed for %s; serving cached assessment", person_id)
            return cached.model_copy(update={"source": AssessmentSource.LOCAL_FALLBACK})

        await self._cache(assessment)
        return assessment

    async def bulk_calculate(self, person_ids: List[str]) -> List[VulnerabilityAssessment]:
        """One round trip for many persons; any failure fails the whole batch."""
        if not person_ids:
            return []
        rows = await self.client.bulk_calculate(person_ids)
        assessments = [self._parse_remote(row, None) for row in rows]
        for assessment in assessments:
            await self._cache(assessment)
        logger.info("Bulk scored %d of %d person(s)", len(assessments), len(person_ids))
        return assessments

    # ------------------------------------------------------------------
    # Local scoring
    # ------------------------------------------------------------------

    def calculate_local(
        self,
        person: Union[PersonRecord, dict],
        household: Union[HouseholdRecord, dict],
        profile: Optional[WeightingProfile] = None,
    ) -> VulnerabilityAssessment:
        """Pure on-device computation; raises InvalidRecordError on malformed records."""
        return self.engine.assess(person, household, profile or self._profile or DEFAULT_WEIGHTING_PROFILE)

    async def calculate(
        self,
        person: Union[PersonRecord, dict],
        household: Union[HouseholdRecord, dict],
        force_recalculate: bool = False,
    ) -> VulnerabilityAssessment:
        """
        Score a person the best way currently available.
        Remote when online and the person already has a server id, otherwise local with
        the active weighting profile. The result supersedes any cached assessment.
        """
        person = self.engine.coerce(PersonRecord, person, "person")
        online = self.monitor.is_online if self.monitor else False
        if online and person.id:
            try:
                return await self.calculate_remote(person.id, force_recalculate)
            except RemoteServiceError:
                logger.info("Falling back to local scoring for %s", person.id)

        profile = await self.get_weighting_profile()
        assessment = self.calculate_local(person, household, profile)
        await self._cache(assessment)
        return assessment

    # ------------------------------------------------------------------
    # Weighting profile & cache
    # ------------------------------------------------------------------

    async def get_weighting_profile(self) -> WeightingProfile:
        """
        Memory, then remote, then last persisted profile, then the built-in default.

        The registry is only asked while the monitor reports online. A fallback profile
        is kept in memory like a fetched one, and dropped when the device comes back
        online so the next call retries the registry.
        """
        if self._profile is not None:
            return self._profile

        if self.monitor is None or self.monitor.is_online:
            try:
                self._profile = WeightingProfile.from_remote(await self.client.get_weighting_profile())
                logger.info("Loaded weighting profile %r from registry", self._profile.name)
                if self.persist_profile:
                    await self.store.set_json(self.store.key("weighting_profile"), self._profile.to_dict())
                return self._profile
            except RemoteServiceError as exc:
                logger.warning("Weighting profile fetch failed: %s", exc)
            except ValueError as exc:
                logger.error("Registry returned an invalid weighting profile: %s", exc)

        self._profile = await self._fallback_profile()
        self._profile_is_fallback = True
        logger.info("Using fallback weighting profile %r", self._profile.name)
        return self._profile

    async def _fallback_profile(self) -> WeightingProfile:
        if self.persist_profile:
            stored = await self.store.get_json(self.store.key("weighting_profile"))
            if stored:
                try:
                    return WeightingProfile.model_validate(stored)
                except ValidationError as exc:
                    logger.error("Discarding invalid persisted weighting profile: %s", exc)
        return DEFAULT_WEIGHTING_PROFILE

    async def _on_online(self) -> None:
        if self._profile_is_fallback:
            self.reset_profile()

    def reset_profile(self) -> None:
        self._profile = None
        self._profile_is_fallback = False

    async def get_cached(self, person_id: str) -> Optional[VulnerabilityAssessment]:
        data = await self.store.get_json(self.store.key("assessment", person_id))
        if not data:
            return None
        try:
            return VulnerabilityAssessment.model_validate(data)
        except ValidationError as exc:
            logger.error("Discarding unreadable cached assessment for %s: %s", person_id, exc)
            return None

    async def _cache(self, assessment: VulnerabilityAssessment) -> None:
        if not assessment.person_id:
            return
        await self.store.set_json(
            self.store.key("assessment", assessment.person_id),
            assessment.model_dump(mode="json"),
        )

    @staticmethod
    def _parse_remote(data, person_id: Optional[str]) -> VulnerabilityAssessment:
        if not isinstance(data, dict):
            raise RemoteServiceError("Unexpected assessment payload from registry")
        try:
            assessment = VulnerabilityAssessment.model_validate(data)
        except ValidationError as exc:
            raise RemoteServiceError(f"Invalid assessment payload: {exc.error_count()} error(s)") from exc
        update = {"source": AssessmentSource.REMOTE}
        if person_id and not assessment.person_id:
            update["person_id"] = str(person_id)
        return assessment.model_copy(update=update)
