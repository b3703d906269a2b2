"""
动作引擎：intent -> 限流 -> hint 执行 -> 选择器修复 -> 记录

职责：
- 每次动作前经过 RateLimiter
- hint 执行升级（needs_escalation）且失败步骤带 selector 时：
  先试缓存修复（并回写成功/失败），再请求 SelectorHealer 做一次 AI 修复，
  修好后继续执行该动作剩余的步骤
- 每次执行写入 action_logs，记录失败不影响动作结果
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional
from urllib.parse import urlsplit

from ..db import repositories
from .console import LogFn, console_log
from .hint_executor import HintBasedExecutor
from .hints import ActionResult, ActionStep, ElementHint, PageContext
from .rate_limiter import RateLimiter
from .selector_healer import SelectorHealer


class ActionEngine:
    def __init__(
        self,
        executor: HintBasedExecutor,
        *,
        healer: Optional[SelectorHealer] = None,
        rate_limiter: Optional[RateLimiter] = None,
        platform: Optional[str] = None,
        record_actions: bool = True,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.executor = executor
        self.healer = healer
        self.rate_limiter = rate_limiter
        self.platform = platform
        self.record_actions = record_actions
        self._log = log_fn or console_log("ActionEngine")

    def perform_intent(self, intent: str, page) -> ActionResult:
        url = page.url
        site = urlsplit(url).hostname or ""
        context = PageContext(site=site, url=url, page=page)

        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

        result = self.executor.execute(intent, context)
        if not result.success and self._can_heal(result):
            result = self._heal_and_continue(context, intent, result)

        self._record(context, intent, result)
        return result

    def _can_heal(self, result: ActionResult) -> bool:
        return bool(
            self.healer is not None
            and result.needs_escalation
            and result.step is not None
            and result.step.hint.selectors
            # 低置信度步骤交给人工，不做修复
            and result.step.confidence >= self.executor.confidence_threshold
        )

    def _heal_and_continue(
        self, context: PageContext, intent: str, failed: ActionResult
    ) -> ActionResult:
        """修好失败步骤后继续执行其后的步骤；任一步失败即返回该步结果。"""
        page = context.page
        remaining = self._steps_after(context.site, intent, failed.step)

        result = self._heal(page, failed)
        if not result.success:
            return result
        healed_method = result.method

        for step in remaining:
            if step.confidence < self.executor.confidence_threshold:
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
            result = self.executor.execute_step(page, step)
            if not result.success and self._can_heal(result):
                result = self._heal(page, result)
            if not result.success:
                return result
            if result.method != "hint":
                healed_method = result.method

        return replace(result, method=healed_method)

    def _steps_after(self, site: str, intent: str, step: Optional[ActionStep]) -> list[ActionStep]:
        hint_file = self.executor.find_hint_file(site)
        action = hint_file.actions.get(intent) if hint_file else None
        if action is None or step is None:
            return []
        steps = list(action.steps)
        for index, candidate in enumerate(steps):
            if candidate is step:
                return steps[index + 1 :]
        return []

    def _heal(self, page, failed: ActionResult) -> ActionResult:
        step = failed.step
        selectors = list(step.hint.selectors)

        cached = self.healer.get_cached_repair(selectors)
        if cached:
            attempt = self._try_selectors(page, step, cached)
            if attempt.success:
                self.healer.record_success(selectors)
                return replace(attempt, method="cached_repair")
            self.healer.record_failure(selectors)
            self._log(f"⚠️ Cached repair no longer matches: {step.intent}", "warn")

        repaired = self.healer.repair(page, selectors, {"field_name": step.intent})
        if repaired:
            attempt = self._try_selectors(page, step, repaired)
            if attempt.success:
                self.healer.record_success(selectors)
                return replace(attempt, method="ai_repair")
            self.healer.record_failure(selectors)

        return failed

    def _try_selectors(self, page, step: ActionStep, selectors: list[str]) -> ActionResult:
        repaired_step = replace(step, hint=ElementHint(selectors=tuple(selectors)))
        return self.executor.execute_step(page, repaired_step)

    def _record(self, context: PageContext, intent: str, result: ActionResult) -> None:
        if not self.record_actions:
            return
        try:
            repositories.record_action(
                platform=self.platform,
                site=context.site,
                url=context.url,
                intent=intent,
                method=result.method,
                selector=result.selector,
                label=result.label,
                text=result.text,
                success=result.success,
                needs_escalation=result.needs_escalation,
                error_message=result.error_message,
            )
        except Exception as exc:
            self._log(f"❌ Failed to log action: {exc}", "error")
