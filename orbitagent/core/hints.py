"""
站点 hint 数据结构（SiteHintFile / ActionStep / ElementHint）。

执行期只读；由 SkillsLoader 从技能文件加载后按站点保存在内存中。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..constants import HINT_DEFAULT_CONFIDENCE


@dataclass(frozen=True)
class ElementHint:
    selectors: tuple[str, ...] = ()
    text_matches: tuple[str, ...] = ()
    aria_labels: tuple[str, ...] = ()
    location: str = ""
    element_type: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ElementHint":
        return cls(
            selectors=tuple(data.get("selectors") or ()),
            text_matches=tuple(data.get("textMatches") or data.get("text_matches") or ()),
            aria_labels=tuple(data.get("ariaLabels") or data.get("aria_labels") or ()),
            location=data.get("location") or "",
            element_type=data.get("elementType") or data.get("element_type") or "",
        )


@dataclass(frozen=True)
class ActionStep:
    intent: str
    hint: ElementHint
    fallback_description: str = ""
    last_verified: str = ""
    confidence: float = HINT_DEFAULT_CONFIDENCE
    failure_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionStep":
        # 缺少 intent / hint 属于数据错误，直接抛 KeyError
        return cls(
            intent=data["intent"],
            hint=ElementHint.from_dict(data["hint"]),
            fallback_description=data.get("fallbackDescription")
            or data.get("fallback_description")
            or "",
            last_verified=data.get("lastVerified") or data.get("last_verified") or "",
            confidence=float(data.get("confidence", HINT_DEFAULT_CONFIDENCE)),
            failure_count=int(data.get("failureCount") or data.get("failure_count") or 0),
        )


@dataclass(frozen=True)
class HintAction:
    steps: tuple[ActionStep, ...] = ()


@dataclass
class SiteHintFile:
    site: str
    actions: dict[str, HintAction] = field(default_factory=dict)
    last_full_scan: str = ""
    last_verified: str = ""
    change_log: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiteHintFile":
        actions = {
            intent: HintAction(
                steps=tuple(ActionStep.from_dict(s) for s in action.get("steps") or [])
            )
            for intent, action in (data.get("actions") or {}).items()
        }
        return cls(
            site=data["site"],
            actions=actions,
            last_full_scan=data.get("lastFullScan") or "",
            last_verified=data.get("lastVerified") or "",
            change_log=list(data.get("changeLog") or []),
        )


@dataclass
class PageContext:
    site: str
    url: str
    page: Any


@dataclass
class ActionResult:
    success: bool
    method: str = "hint"
    selector: Optional[str] = None
    label: Optional[str] = None
    text: Optional[str] = None
    needs_escalation: bool = False
    error_message: Optional[str] = None
    step: Optional[ActionStep] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "method": self.method,
            "selector": self.selector,
            "label": self.label,
            "text": self.text,
            "needs_escalation": self.needs_escalation,
            "error_message": self.error_message,
        }
