"""
基于 hint 的动作执行器

职责：
- 按 intent 查找站点 hint，逐步执行 ActionStep
- 每一步的定位顺序：CSS selector -> aria label -> 可见文本
- 低置信度步骤直接升级（needs_escalation），不盲目尝试
"""

from __future__ import annotations

from typing import Optional

from ..constants import HINT_CONFIDENCE_THRESHOLD, HINT_SELECTOR_TIMEOUT
from .console import LogFn, console_log
from .hints import ActionResult, ActionStep, PageContext, SiteHintFile


class HintBasedExecutor:
    def __init__(
        self,
        *,
        confidence_threshold: float = HINT_CONFIDENCE_THRESHOLD,
        selector_timeout_ms: int = HINT_SELECTOR_TIMEOUT,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.confidence_threshold = confidence_threshold
        self.selector_timeout_ms = selector_timeout_ms
        self._log = log_fn or console_log("HintExecutor")
        self._hints: dict[str, SiteHintFile] = {}

    def load_hints(self, site: str, hint_file: SiteHintFile) -> None:
        self._hints[site] = hint_file

    def get_hints(self, site: str) -> Optional[SiteHintFile]:
        return self._hints.get(site)

    def execute(self, intent: str, context: PageContext) -> ActionResult:
        hint_file = self.find_hint_file(context.site)
        if hint_file is None:
            self._log(f"⚠️ No hint file for site: {context.site}", "warn")
            return ActionResult(
                success=False,
                needs_escalation=True,
                error_message=f"No hints for {context.site}",
            )

        action = hint_file.actions.get(intent)
        if action is None:
            self._log(f"⚠️ No hint for intent: {intent} ({context.site})", "warn")
            return ActionResult(
                success=False,
                needs_escalation=True,
                error_message=f"No hint for intent: {intent}",
            )

        last: Optional[ActionResult] = None
        for step in action.steps:
            if step.confidence < self.confidence_threshold:
                self._log(
                    f"⚠️ Step confidence below threshold: {step.intent} ({step.confidence})",
                    "warn",
                )
                return ActionResult(
                    success=False,
                    needs_escalation=True,
                    error_message=f"Low confidence: {step.confidence}",
                    step=step,
                )

            last = self.execute_step(context.page, step)
            if not last.success:
                return last

        if last is None:
            return ActionResult(success=True)
        return last

    def execute_step(self, page, step: ActionStep) -> ActionResult:
        """按 selector -> aria label -> 文本 的顺序定位，第一个可见元素即成功。"""
        timeout = self.selector_timeout_ms

        for selector in step.hint.selectors:
            if self._is_visible(lambda: page.locator(selector).first, timeout):
                self._log(f"✓ Found element via hint: {step.intent} -> {selector}", "info")
                return ActionResult(success=True, selector=selector, label=step.intent)

        for label in step.hint.aria_labels:
            if self._is_visible(lambda: page.get_by_label(label).first, timeout):
                self._log(f"✓ Found element via aria label: {step.intent} -> {label}", "info")
                return ActionResult(
                    success=True, label=label, selector=f'[aria-label="{label}"]'
                )

        for text in step.hint.text_matches:
            if self._is_visible(lambda: page.get_by_text(text, exact=False).first, timeout):
                self._log(f"✓ Found element via text match: {step.intent} -> {text}", "info")
                return ActionResult(success=True, text=text)

        self._log(f"⚠️ All selectors failed for step: {step.intent}", "warn")
        return ActionResult(
            success=False,
            needs_escalation=True,
            error_message=f"No matching element for: {step.fallback_description}",
            step=step,
        )

    @staticmethod
    def _is_visible(make_locator, timeout: int) -> bool:
        try:
            locator = make_locator()
            return bool(locator and locator.is_visible(timeout=timeout))
        except Exception:
            return False

    def find_hint_file(self, hostname: str) -> Optional[SiteHintFile]:
        """
        Exact match first, then a loose hostname substring match in either
        direction ("www.linkedin.com" matches "linkedin.com/jobs").

        NOTE: the substring fallback can match unrelated sites that share a
        substring (e.g. "indeed.com" vs "notindeed.com").
        """
        if not hostname:
            return None
        if hostname in self._hints:
            return self._hints[hostname]

        bare_host = hostname.replace("www.", "")
        for site, hint_file in self._hints.items():
            site_host = site.split("/")[0]
            if site_host in hostname or bare_host in site_host:
                return hint_file
        return None
