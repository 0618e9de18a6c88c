from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from config.domain_exceptions import ValidationError

STEP_TYPES = ("NODE_POINT", "AREA")
PASS_STRATEGIES = ("AUTO", "MANUAL")


@dataclass(frozen=True)
class MissionStep:
    sequence: int
    position: str
    type: str = "NODE_POINT"
    put_down: bool = False
    pass_strategy: str = "AUTO"
    waiting_millis: int = 0

    @property
    def is_manual(self) -> bool:
        return self.pass_strategy == "MANUAL"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def as_remote_payload(self) -> dict[str, Any]:
        """Serialize using the AMR controller's `missionData` field names."""
        return {
            "sequence": self.sequence,
            "position": self.position,
            "type": self.type,
            "putDown": self.put_down,
            "passStrategy": self.pass_strategy,
            "waitingMillis": self.waiting_millis,
        }


def _first(raw: dict, *keys: str, default=None):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def parse_steps(raw_steps: Any) -> list[MissionStep]:
    """
    Validate and normalize a step list from a request or template.

    Accepts snake_case or the controller's camelCase keys. Steps keep the given
    order; `sequence` defaults to the 1-based position in the list.
    """
    if not isinstance(raw_steps, list) or not raw_steps:
        raise ValidationError("A mission needs at least one step.")

    steps: list[MissionStep] = []
    for index, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            raise ValidationError(f"Step {index} must be an object.")

        position = str(_first(raw, "position", default="") or "").strip()
        if not position:
            raise ValidationError(f"Step {index} is missing a position.")

        step_type = str(_first(raw, "type", default="NODE_POINT")).strip().upper()
        if step_type not in STEP_TYPES:
            raise ValidationError(f"Step {index} has unknown type '{step_type}'.")

        pass_strategy = str(_first(raw, "pass_strategy", "passStrategy", default="AUTO")).strip().upper()
        if pass_strategy not in PASS_STRATEGIES:
            raise ValidationError(f"Step {index} has unknown pass strategy '{pass_strategy}'.")

        try:
            waiting_millis = int(_first(raw, "waiting_millis", "waitingMillis", default=0))
            sequence = int(_first(raw, "sequence", default=index + 1))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Step {index} has a non-numeric sequence or wait.") from exc
        if waiting_millis < 0:
            raise ValidationError(f"Step {index} has a negative wait.")

        steps.append(
            MissionStep(
                sequence=sequence,
                position=position,
                type=step_type,
                put_down=bool(_first(raw, "put_down", "putDown", default=False)),
                pass_strategy=pass_strategy,
                waiting_millis=waiting_millis,
            )
        )
    return steps


def load_steps(stored: Any) -> list[MissionStep]:
    """Rehydrate steps persisted on a queue item; invalid rows are skipped."""
    if not isinstance(stored, list):
        return []
    out: list[MissionStep] = []
    for index, raw in enumerate(stored):
        if not isinstance(raw, dict) or not raw.get("position"):
            continue
        out.append(
            MissionStep(
                sequence=int(raw.get("sequence") or index + 1),
                position=str(raw["position"]),
                type=str(raw.get("type") or "NODE_POINT"),
                put_down=bool(raw.get("put_down", False)),
                pass_strategy=str(raw.get("pass_strategy") or "AUTO"),
                waiting_millis=int(raw.get("waiting_millis") or 0),
            )
        )
    return out
