"""Features – LocalEvaluator, evaluates flag definitions without a round trip."""
from __future__ import annotations

from typing import Any, Mapping

from hogflags.api.models import (
    FilterSet,
    FilterType,
    LocalEvaluationApiResult,
    LocalFeatureFlag,
    PropertyFilter,
)
from hogflags.features.feature_flag import FeatureFlag
from hogflags.features.groups import GroupCollection
from hogflags.features.matching import match_property, matches_dependency_value, rollout_hash
from hogflags.kernel.errors import InconclusiveMatchError, RequiresServerEvaluationError
from hogflags.kernel.time import Clock, SystemClock
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

FlagValue = bool | str


class LocalEvaluator:
    """Evaluate feature flags against downloaded definitions.

    :meth:`compute_flag_locally` raises :class:`InconclusiveMatchError`
    when the definitions alone cannot decide a flag (missing properties,
    experience continuity, circular dependencies...) and
    :class:`RequiresServerEvaluationError` when the flag depends on data
    only the server holds, such as static cohorts.
    """

    def __init__(self, api_result: LocalEvaluationApiResult, clock: Clock | None = None) -> None:
        self._api_result = api_result
        self._clock = clock or SystemClock()
        self._flags: dict[str, LocalFeatureFlag] = {f.key: f for f in api_result.flags}
        self._cohorts: dict[int, FilterSet] = _int_keys(api_result.cohorts, "cohort")
        self._group_type_mapping: dict[int, str] = _int_keys(api_result.group_type_mapping, "group_type")

    @property
    def api_result(self) -> LocalEvaluationApiResult:
        return self._api_result

    @property
    def flags(self) -> Mapping[str, LocalFeatureFlag]:
        return self._flags

    def get_flag(self, key: str) -> LocalFeatureFlag | None:
        return self._flags.get(key)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate_feature_flag(
        self,
        key: str,
        distinct_id: str,
        groups: GroupCollection | None = None,
        person_properties: Mapping[str, Any] | None = None,
        warn_on_unknown_groups: bool = True,
    ) -> FlagValue:
        flag = self._flags.get(key)
        if flag is None:
            raise KeyError(f"Flag {key} does not exist")
        return self.compute_flag_locally(flag, distinct_id, groups, person_properties, warn_on_unknown_groups)

    def evaluate_all_flags(
        self,
        distinct_id: str,
        groups: GroupCollection | None = None,
        person_properties: Mapping[str, Any] | None = None,
        warn_on_unknown_groups: bool = True,
    ) -> tuple[dict[str, FeatureFlag], bool]:
        """Evaluate every flag; the second item says whether to ask the server."""
        results: dict[str, FeatureFlag] = {}
        if not self._api_result.flags:
            return results, True

        fallback_to_remote = False
        for flag in self._api_result.flags:
            try:
                value = self.compute_flag_locally(
                    flag, distinct_id, groups, person_properties, warn_on_unknown_groups
                )
            except InconclusiveMatchError:
                fallback_to_remote = True
                continue
            except (KeyError, TypeError, ValueError) as exc:
                log.error("local_flag_evaluation_failed", key=flag.key, error=str(exc))
                fallback_to_remote = True
                continue
            results[flag.key] = FeatureFlag.from_local_evaluation(flag.key, value, flag.filters.payloads)
        return results, fallback_to_remote

    def compute_flag_locally(
        self,
        flag: LocalFeatureFlag,
        distinct_id: str,
        groups: GroupCollection | None = None,
        person_properties: Mapping[str, Any] | None = None,
        warn_on_unknown_groups: bool = True,
    ) -> FlagValue:
        return self._compute(
            flag,
            distinct_id,
            groups or GroupCollection(),
            person_properties or {},
            {},
            warn_on_unknown_groups,
        )

    # ------------------------------------------------------------------
    # Flags and conditions
    # ------------------------------------------------------------------

    def _compute(
        self,
        flag: LocalFeatureFlag,
        distinct_id: str,
        groups: GroupCollection,
        person_properties: Mapping[str, Any],
        evaluation_cache: dict[str, FlagValue],
        warn_on_unknown_groups: bool,
    ) -> FlagValue:
        if flag.key in evaluation_cache:
            return evaluation_cache[flag.key]

        if flag.ensure_experience_continuity:
            raise InconclusiveMatchError(f"Flag '{flag.key}' has experience continuity enabled")

        if not flag.active:
            evaluation_cache[flag.key] = False
            return False

        group_index = flag.filters.aggregation_group_type_index
        if group_index is None:
            result = self._match_flag_conditions(
                flag, distinct_id, person_properties, evaluation_cache, groups
            )
        else:
            group_type = self._group_type_mapping.get(group_index)
            if group_type is None:
                log.warning("unknown_group_type_index", key=flag.key, group_type_index=group_index)
                raise InconclusiveMatchError(f"Flag has unknown group type index: {group_index}")

            group = groups.get(group_type)
            if group is None:
                # The server would answer the same, so no fallback.
                if warn_on_unknown_groups:
                    log.warning("group_type_not_passed_in", key=flag.key, group_type=group_type)
                else:
                    log.debug("group_type_not_passed_in", key=flag.key, group_type=group_type)
                result = False
            else:
                result = self._match_flag_conditions(
                    flag, group.group_key, group.properties, evaluation_cache, groups
                )

        evaluation_cache[flag.key] = result
        return result

    def _match_flag_conditions(
        self,
        flag: LocalFeatureFlag,
        distinct_id: str,
        properties: Mapping[str, Any],
        evaluation_cache: dict[str, FlagValue],
        groups: GroupCollection,
    ) -> FlagValue:
        is_inconclusive = False
        variant_keys = {v.key for v in flag.filters.variants}

        for condition in flag.filters.groups:
            try:
                if not self._is_condition_match(
                    flag, distinct_id, condition.properties, condition.rollout_percentage,
                    properties, evaluation_cache, groups,
                ):
                    continue
            except RequiresServerEvaluationError:
                raise
            except InconclusiveMatchError:
                is_inconclusive = True
                continue

            if condition.variant is not None and condition.variant in variant_keys:
                return condition.variant
            variant = self._matching_variant(flag, distinct_id)
            return variant if variant is not None else True

        if is_inconclusive:
            raise InconclusiveMatchError("Can't determine if feature flag is enabled or not with given properties")
        return False

    def _is_condition_match(
        self,
        flag: LocalFeatureFlag,
        distinct_id: str,
        condition_properties: tuple[PropertyFilter, ...],
        rollout_percentage: float | None,
        properties: Mapping[str, Any],
        evaluation_cache: dict[str, FlagValue],
        groups: GroupCollection,
    ) -> bool:
        for prop in condition_properties:
            if prop.type == FilterType.COHORT:
                matched = self._match_cohort(prop, distinct_id, properties)
            elif prop.type == FilterType.FLAG:
                matched = self._match_flag_dependency(prop, distinct_id, properties, evaluation_cache, groups)
            else:
                matched = match_property(prop, properties, distinct_id, self._clock.now())
            if not matched:
                return False

        if rollout_percentage is None or rollout_percentage >= 100:
            return True
        return rollout_hash(flag.key, distinct_id) <= rollout_percentage / 100

    def _matching_variant(self, flag: LocalFeatureFlag, distinct_id: str) -> str | None:
        hash_value = rollout_hash(flag.key, distinct_id, salt="variant")
        lower = 0.0
        for variant in flag.filters.variants:
            upper = lower + variant.rollout_percentage / 100
            if lower <= hash_value < upper:
                return variant.key
            lower = upper
        return None

    # ------------------------------------------------------------------
    # Cohorts
    # ------------------------------------------------------------------

    def _match_cohort(self, prop: PropertyFilter, distinct_id: str, properties: Mapping[str, Any]) -> bool:
        try:
            cohort_id = int(prop.value)
        except (TypeError, ValueError):
            cohort_id = None
        if cohort_id is None or cohort_id not in self._cohorts:
            raise RequiresServerEvaluationError(
                f"cohort {prop.value} not found in local cohorts - likely a static cohort"
            )
        return self._match_property_group(self._cohorts[cohort_id], distinct_id, properties)

    def _match_property_group(
        self,
        filter_set: FilterSet | None,
        distinct_id: str,
        properties: Mapping[str, Any],
    ) -> bool:
        if filter_set is None or not filter_set.values:
            return True

        is_and = filter_set.type == "AND"
        error_matching_locally = False

        if isinstance(filter_set.values[0], FilterSet):
            for child in filter_set.values:
                if not isinstance(child, FilterSet):
                    continue
                try:
                    matched = self._match_property_group(child, distinct_id, properties)
                except RequiresServerEvaluationError:
                    raise
                except InconclusiveMatchError as exc:
                    log.debug("property_group_inconclusive", error=exc.message)
                    error_matching_locally = True
                    continue
                if is_and and not matched:
                    return False
                if not is_and and matched:
                    return True
        else:
            for prop in filter_set.values:
                if not isinstance(prop, PropertyFilter):
                    continue
                try:
                    if prop.type == FilterType.COHORT:
                        matched = self._match_cohort(prop, distinct_id, properties)
                    else:
                        matched = match_property(prop, properties, distinct_id, self._clock.now())
                except RequiresServerEvaluationError:
                    raise
                except InconclusiveMatchError as exc:
                    log.debug("property_inconclusive", key=prop.key, error=exc.message)
                    error_matching_locally = True
                    continue
                effective = matched != prop.negation
                if is_and and not effective:
                    return False
                if not is_and and effective:
                    return True

        if error_matching_locally:
            raise InconclusiveMatchError("Can't match cohort without a given cohort property value")
        # Every AND child matched, or no OR child did.
        return is_and

    # ------------------------------------------------------------------
    # Flag dependencies
    # ------------------------------------------------------------------

    def _match_flag_dependency(
        self,
        prop: PropertyFilter,
        distinct_id: str,
        properties: Mapping[str, Any],
        evaluation_cache: dict[str, FlagValue],
        groups: GroupCollection,
    ) -> bool:
        if prop.value is None:
            raise InconclusiveMatchError(f"Flag dependency '{prop.key}' has no value")
        chain = prop.dependency_chain
        if chain is None:
            raise InconclusiveMatchError(f"Flag dependency '{prop.key}' is missing 'dependency_chain'")
        if not chain:
            raise InconclusiveMatchError(f"Flag dependency '{prop.key}' is circular")
        if chain[-1] != prop.key:
            raise InconclusiveMatchError(
                f"Flag dependency '{prop.key}' has an invalid 'dependency_chain' - last item should be the flag key"
            )

        for dependency_key in chain:
            if dependency_key in evaluation_cache:
                continue
            evaluation_cache[dependency_key] = self._evaluate_dependency(
                dependency_key, distinct_id, properties, evaluation_cache, groups
            )

        if prop.key not in evaluation_cache:
            raise InconclusiveMatchError(f"Flag dependency '{prop.key}' is missing in evaluation cache")
        return matches_dependency_value(prop.value, evaluation_cache[prop.key])

    def _evaluate_dependency(
        self,
        key: str,
        distinct_id: str,
        properties: Mapping[str, Any],
        evaluation_cache: dict[str, FlagValue],
        groups: GroupCollection,
    ) -> FlagValue:
        flag = self._flags.get(key)
        if flag is None:
            raise InconclusiveMatchError(f"Cannot evaluate flag dependency '{key}' - flag not found")
        if not flag.active:
            return False
        try:
            return self._compute(flag, distinct_id, groups, properties, evaluation_cache, False)
        except RequiresServerEvaluationError:
            raise
        except InconclusiveMatchError as exc:
            raise InconclusiveMatchError(
                f"Cannot evaluate flag dependency '{key}': {exc.message}", cause=exc
            ) from exc


def _int_keys(mapping: Mapping[str, Any], kind: str) -> dict[int, Any]:
    result: dict[int, Any] = {}
    for raw_id, value in mapping.items():
        try:
            result[int(raw_id)] = value
        except (TypeError, ValueError):
            log.error("invalid_id_skipped", kind=kind, id=raw_id)
    return result


__all__ = ["FlagValue", "LocalEvaluator"]
