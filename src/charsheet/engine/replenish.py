from __future__ import annotations

from typing import Any
from typing import Callable
from typing import Mapping

from .character import Character
from .logging import get_logger
from .models import Identifier
from .models import RestType
from .records import AvailabilityToggleRecord
from .records import PointsPoolRecord
from .records import SlotsRecord
from .records import SpecialUXRecord
from .records import UsageMap
from .records import UsageRecord
from .templates import BaseTemplate
from .templates import SpecialUXTemplate
from .templates import TemplateRegistry
from .usage import Clock
from .usage import utc_now

logger = get_logger(__name__)

# Given the component's template, its current state and the rest being taken,
# returns the keys to merge into the state.
ResetHook = Callable[[SpecialUXTemplate, Mapping[str, Any], RestType], Mapping[str, Any]]

REST_TIMINGS: dict[RestType, frozenset[str]] = {
    "short_rest": frozenset({"short_rest"}),
    "long_rest": frozenset({"long_rest", "dawn"}),
    "dawn": frozenset({"long_rest", "dawn"}),
}


def resets_on(timing: str | None, rest_type: RestType) -> bool:
    """Whether a feature that replenishes on `timing` is reset by `rest_type`.

    `manual` (and no timing at all) never resets.
    """
    return timing in REST_TIMINGS[rest_type]


def restore_available(
    template: SpecialUXTemplate, state: Mapping[str, Any], rest_type: RestType
) -> Mapping[str, Any]:
    """Make a once-per-rest component available again, if it tracks that."""
    if "available" in state:
        return {"available": True}
    return {}


class Replenisher:
    """Applies short and long rests to a character's usage map.

    Special UX components are reset by a hook registered for their
    component id; components without one use `restore_available`.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        clock: Clock = utc_now,
        hooks: Mapping[str, ResetHook] | None = None,
    ):
        self.registry = registry
        self.clock = clock
        self.hooks: dict[str, ResetHook] = dict(hooks or {})

    def register_hook(self, component_id: str, hook: ResetHook) -> None:
        self.hooks[component_id] = hook

    def in_scope(
        self, template: BaseTemplate | None, record: UsageRecord, rest_type: RestType
    ) -> bool:
        if template is None or template.feature_type != record.feature_type:
            return False
        # Options lists and skill modifiers have nothing to replenish.
        match record:
            case (
                SlotsRecord()
                | PointsPoolRecord()
                | AvailabilityToggleRecord()
                | SpecialUXRecord()
            ):
                return resets_on(template.replenish_on, rest_type)
        return False

    def features_for_reset(
        self, character: Character, rest_type: RestType
    ) -> list[Identifier]:
        """Ids of the tracked features this rest would reset."""
        return [
            feature_id
            for feature_id, record in character.feature_usage.items()
            if self.in_scope(self.registry.get(feature_id), record, rest_type)
        ]

    def reset_feature(
        self, character: Character, feature_id: Identifier, rest_type: RestType
    ) -> UsageMap:
        usage = character.feature_usage
        record = usage.get(feature_id)
        template = self.registry.get(feature_id)
        if record is None or not self.in_scope(template, record, rest_type):
            return usage
        return usage | {feature_id: self._reset(template, record, rest_type)}

    def reset_all(self, character: Character, rest_type: RestType) -> UsageMap:
        """Reset every tracked feature that replenishes on this rest.

        Features out of scope are carried over untouched.
        """
        reset: list[Identifier] = []
        usage: UsageMap = {}
        for feature_id, record in character.feature_usage.items():
            template = self.registry.get(feature_id)
            if self.in_scope(template, record, rest_type):
                usage[feature_id] = self._reset(template, record, rest_type)
                reset.append(feature_id)
            else:
                usage[feature_id] = record
        logger.info(
            "Rest taken",
            character=character.id,
            rest_type=rest_type,
            features=reset,
        )
        return usage

    def _reset(
        self, template: BaseTemplate, record: UsageRecord, rest_type: RestType
    ) -> UsageRecord:
        now = self.clock()
        changes: dict[str, Any] = {"last_reset": now, "last_updated": now}
        match record:
            case SlotsRecord():
                changes["current_uses"] = record.max_uses
            case PointsPoolRecord():
                changes["current_points"] = record.max_points
            case AvailabilityToggleRecord():
                changes["is_available"] = True
            case SpecialUXRecord() if isinstance(template, SpecialUXTemplate):
                hook = self.hooks.get(template.config.component_id, restore_available)
                patch = hook(template, record.custom_state, rest_type)
                changes["custom_state"] = record.custom_state | dict(patch)
        return record.model_copy(update=changes)
