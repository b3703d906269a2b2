"""
选择器自修复模块

职责：
- 选择器全部失效时，抓取净化后的 DOM 快照交给 LLM 给出替代选择器
- 在真实页面上校验建议的选择器，只保留能匹配到元素的
- 按平台持久化修复缓存（置信度 + 成功/失败计数），跨会话复用
- 同一组失效选择器每次运行最多调用一次 AI

任何异常都视为“无可用修复”，只返回 None，不向调用方抛出。
"""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from ..config import get_selector_cache_dir
from ..constants import (
    SELECTOR_CACHE_MAX_FAILURES,
    SELECTOR_CACHE_MIN_CONFIDENCE,
    SELECTOR_CACHE_VERSION,
    SELECTOR_CONFIDENCE_BOOST,
    SELECTOR_CONFIDENCE_PENALTY,
    SELECTOR_MAX_CANDIDATE_LENGTH,
    SELECTOR_SNAPSHOT_MAX_LENGTH,
    SELECTOR_SNAPSHOT_MIN_LENGTH,
)
from .circuit_breaker import CircuitBreaker
from .console import LogFn, console_log

_JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)

REPAIR_SYSTEM_PROMPT = """You are a CSS selector repair specialist for web automation.
You will be given:
1. A list of CSS selectors that no longer match any elements
2. A DOM snapshot of the current page
3. Optionally, the field name these selectors were trying to target

Your job is to analyze the DOM and suggest corrected CSS selectors.

Respond with ONLY valid JSON in this format:
{
  "selectors": ["selector1", "selector2"],
  "confidence": 0.85,
  "reasoning": "Brief explanation"
}

Rules:
- Return 1-3 selectors, ordered by specificity (most specific first)
- Prefer data attributes and semantic selectors over class-based ones
- Class names with hashes (e.g., .css-1abc23) are unstable; avoid them
- Confidence should reflect how sure you are (0.0-1.0)
- If you can't determine good selectors, return empty selectors array with low confidence"""

# 在页面内执行：克隆容器，去掉脚本/样式/内联 style/data URI，按上限截断
SNAPSHOT_JS = """
({ containerSel, maxLen }) => {
  const root = containerSel
    ? (document.querySelector(containerSel) || document.body)
    : document.body;
  const clone = root.cloneNode(true);
  clone
    .querySelectorAll('script, style, svg, link[rel="stylesheet"], noscript')
    .forEach((el) => el.remove());
  let html = clone.innerHTML;
  html = html.replace(/data:[^"'\\s]+/g, 'data:...');
  html = html.replace(/\\sstyle="[^"]*"/g, '');
  html = html.replace(/\\s{2,}/g, ' ');
  if (html.length > maxLen) {
    html = html.slice(0, maxLen) + '\\n<!-- truncated -->';
  }
  return html;
}
"""


@dataclass
class RepairedSelector:
    original_selectors: list[str]
    repaired_selectors: list[str]
    confidence: float
    repaired_at: str
    success_count: int = 0
    failure_count: int = 0

    @property
    def is_usable(self) -> bool:
        return (
            self.confidence >= SELECTOR_CACHE_MIN_CONFIDENCE
            and self.failure_count < SELECTOR_CACHE_MAX_FAILURES
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalSelectors": list(self.original_selectors),
            "repairedSelectors": list(self.repaired_selectors),
            "confidence": self.confidence,
            "repairedAt": self.repaired_at,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepairedSelector":
        return cls(
            original_selectors=list(data.get("originalSelectors") or []),
            repaired_selectors=list(data.get("repairedSelectors") or []),
            confidence=float(data.get("confidence", 0.0)),
            repaired_at=str(data.get("repairedAt") or ""),
            success_count=int(data.get("successCount") or 0),
            failure_count=int(data.get("failureCount") or 0),
        )


@dataclass
class RepairResponse:
    selectors: list[str]
    confidence: float
    reasoning: str = ""


def parse_repair_response(raw: str) -> Optional[RepairResponse]:
    """
    Parse the model reply into a RepairResponse.

    Returns None for replies without a JSON object or whose ``selectors``
    is not a list. Confidence is clamped to [0, 1] (0.5 when missing).
    """
    match = _JSON_BLOCK_RE.search(raw or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("selectors"), list):
        return None

    selectors = [
        s
        for s in parsed["selectors"]
        if isinstance(s, str) and 0 < len(s) < SELECTOR_MAX_CANDIDATE_LENGTH
    ]
    confidence = parsed.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = max(0.0, min(1.0, float(confidence)))
    else:
        confidence = 0.5
    return RepairResponse(
        selectors=selectors,
        confidence=confidence,
        reasoning=str(parsed.get("reasoning") or ""),
    )


class SelectorHealer:
    def __init__(
        self,
        platform: str,
        ai_client=None,
        *,
        cache_dir: Optional[Path | str] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.platform = platform
        self.ai = ai_client
        self._cache_dir = Path(cache_dir) if cache_dir else None
        self._breaker = circuit_breaker
        self._log = log_fn or console_log(f"SelectorHealer:{platform}")
        self._attempted_this_session: set[str] = set()
        self._attempt_lock = threading.Lock()
        self._cache_lock = threading.RLock()
        self._cache: dict[str, RepairedSelector] = {}
        self._cache_loaded = False
        self._ai_available: Optional[bool] = None

    @staticmethod
    def cache_key(selectors: Sequence[str]) -> str:
        """顺序无关的缓存 key。"""
        return "||".join(sorted(selectors))

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_entry(self, selectors: Sequence[str]) -> Optional[RepairedSelector]:
        """Raw cache entry, ignoring the eviction policy."""
        self._ensure_cache_loaded()
        with self._cache_lock:
            return self._cache.get(self.cache_key(selectors))

    def get_cached_repair(self, selectors: Sequence[str]) -> Optional[list[str]]:
        entry = self.get_entry(selectors)
        if entry is None or not entry.is_usable:
            return None
        return list(entry.repaired_selectors)

    def record_success(self, selectors: Sequence[str]) -> None:
        self._ensure_cache_loaded()
        with self._cache_lock:
            entry = self._cache.get(self.cache_key(selectors))
            if entry is None:
                return
            entry.success_count += 1
            entry.confidence = min(1.0, entry.confidence + SELECTOR_CONFIDENCE_BOOST)
            self._persist_cache()

    def record_failure(self, selectors: Sequence[str]) -> None:
        self._ensure_cache_loaded()
        with self._cache_lock:
            entry = self._cache.get(self.cache_key(selectors))
            if entry is None:
                return
            entry.failure_count += 1
            entry.confidence = max(0.0, entry.confidence - SELECTOR_CONFIDENCE_PENALTY)
            self._persist_cache()

    def reset_session(self) -> None:
        """只清空本次运行的去重集合，不影响持久化缓存。"""
        with self._attempt_lock:
            self._attempted_this_session.clear()

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(
        self,
        page,
        selectors: Sequence[str],
        context: Optional[dict[str, Any]] = None,
    ) -> Optional[list[str]]:
        """
        Ask the AI for replacement selectors and validate them on the live page.

        context keys (all optional):
            field_name: what the selectors were targeting
            within: container selector that scopes snapshot and validation
        """
        context = context or {}
        key = self.cache_key(selectors)

        with self._attempt_lock:
            if key in self._attempted_this_session:
                return None
            self._attempted_this_session.add(key)

        if not self.is_ai_available():
            return None

        within = context.get("within")
        try:
            snapshot = self.capture_snapshot(page, within)
            if not snapshot or len(snapshot) < SELECTOR_SNAPSHOT_MIN_LENGTH:
                self._log("⚠️ DOM snapshot too small, skipping repair", "warn")
                return None

            response = self._call_ai(list(selectors), snapshot, context.get("field_name"))
            if response is None or not response.selectors:
                self._log("⚠️ AI returned no selectors", "warn")
                return None

            validated = self._validate_selectors(page, response.selectors, within)
            if not validated:
                self._log("⚠️ None of the suggested selectors matched the page", "warn")
                return None

            entry = RepairedSelector(
                original_selectors=list(selectors),
                repaired_selectors=validated,
                confidence=response.confidence,
                repaired_at=datetime.now(timezone.utc).isoformat(),
            )
            self._ensure_cache_loaded()
            with self._cache_lock:
                self._cache[key] = entry
                self._persist_cache()

            self._log(
                f"✓ Selector repaired: {list(selectors)} -> {validated} "
                f"(confidence={response.confidence:.2f})",
                "info",
            )
            return validated
        except Exception as exc:
            self._log(f"⚠️ Selector repair failed: {exc}", "warn")
            return None

    def capture_snapshot(self, page, within: Optional[str] = None) -> str:
        return page.evaluate(
            SNAPSHOT_JS,
            {"containerSel": within, "maxLen": SELECTOR_SNAPSHOT_MAX_LENGTH},
        )

    def _call_ai(
        self,
        failed_selectors: list[str],
        dom_snapshot: str,
        field_name: Optional[str],
    ) -> Optional[RepairResponse]:
        lines = ["## Failed Selectors"]
        lines.extend(f"- `{s}`" for s in failed_selectors)
        lines.append("")
        if field_name:
            lines.extend(["## Target Field", field_name, ""])
        lines.extend(["## DOM Snapshot", "```html", dom_snapshot, "```"])
        user_message = "\n".join(lines)

        def _complete():
            return self.ai.complete(
                system_prompt=REPAIR_SYSTEM_PROMPT,
                user_message=user_message,
                max_tokens=512,
                task="repair_hint",
            )

        result = self._breaker.execute(_complete) if self._breaker else _complete()
        content = getattr(result, "content", result)
        parsed = parse_repair_response(content if isinstance(content, str) else "")
        if parsed is None:
            self._log(f"⚠️ Failed to parse AI repair response: {str(content)[:200]}", "warn")
        return parsed

    @staticmethod
    def _validate_selectors(page, selectors: list[str], within: Optional[str]) -> list[str]:
        valid: list[str] = []
        for selector in selectors:
            full_selector = f"{within} {selector}" if within else selector
            try:
                if page.locator(full_selector).count() > 0:
                    valid.append(selector)
            except Exception:
                # 非法选择器语法
                continue
        return valid

    def is_ai_available(self) -> bool:
        if self._ai_available is not None:
            return self._ai_available
        if self.ai is None:
            self._ai_available = False
            return False
        checker = getattr(self.ai, "is_configured", None)
        try:
            self._ai_available = bool(checker()) if callable(checker) else True
        except Exception:
            self._ai_available = False
        return self._ai_available

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _get_cache_path(self) -> Path:
        directory = self._cache_dir or get_selector_cache_dir()
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{self.platform}-selectors.json"

    def _ensure_cache_loaded(self) -> None:
        with self._cache_lock:
            if self._cache_loaded:
                return
            self._cache_loaded = True
            try:
                path = self._get_cache_path()
                if not path.exists():
                    return
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                self._log(f"⚠️ Failed to load selector cache: {exc}", "warn")
                return

            if not isinstance(data, dict):
                return
            if data.get("version") != SELECTOR_CACHE_VERSION or data.get("platform") != self.platform:
                return
            entries = data.get("entries") or {}
            if not isinstance(entries, dict):
                self._log("⚠️ Selector cache entries malformed, ignoring file", "warn")
                return
            for key, raw_entry in entries.items():
                if not isinstance(raw_entry, dict):
                    self._log(f"⚠️ Skipping malformed cache entry: {key}", "warn")
                    continue
                try:
                    self._cache[key] = RepairedSelector.from_dict(raw_entry)
                except (TypeError, ValueError) as exc:
                    self._log(f"⚠️ Skipping malformed cache entry {key}: {exc}", "warn")
            self._log(
                f"Loaded {len(self._cache)} cached selector repairs for {self.platform}",
                "info",
            )

    def _persist_cache(self) -> None:
        payload = {
            "version": SELECTOR_CACHE_VERSION,
            "platform": self.platform,
            "entries": {key: entry.to_dict() for key, entry in self._cache.items()},
        }
        try:
            self._get_cache_path().write_text(
                json.dumps(payload, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            self._log(f"⚠️ Failed to persist selector cache: {exc}", "warn")
