"""
浏览器管理模块：统一管理 Playwright 浏览器启动、profile 目录与事件日志。

每个平台 Worker 在自己的线程里调用 ``open_platform_session``，
得到独立的持久化上下文（sync API 的对象不能跨线程使用）。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from playwright.sync_api import BrowserContext, Page, sync_playwright

from ..config import get_data_dir, load_settings
from .console import LogFn, silent_log


@dataclass
class BrowserSession:
    playwright: Any
    context: BrowserContext
    page: Page

    def close(self) -> None:
        try:
            self.context.close()
        finally:
            try:
                self.playwright.stop()
            except Exception:
                pass


class BrowserManager:
    """
    管理浏览器生命周期与配置，避免业务流程中重复拼装启动参数。
    """

    def __init__(self, log_fn: Optional[LogFn] = None) -> None:
        self._log = log_fn or silent_log
        self._settings = load_settings()

    def build_launch_args(self, profile_name: Optional[str] = None) -> dict:
        browser_cfg = self._settings.get("browser") or {}

        headless = bool(browser_cfg.get("headless", False))
        slow_mo = int(browser_cfg.get("slow_mo", 0))
        raw_profile_dir = browser_cfg.get("user_data_dir")
        base_dir = (
            Path(raw_profile_dir).expanduser()
            if raw_profile_dir
            else get_data_dir() / "chrome-profile"
        )
        # 持久化上下文不能共用同一个 user_data_dir
        user_data_dir = base_dir / profile_name if profile_name else base_dir

        launch_args = {
            "headless": headless,
            "slow_mo": slow_mo if slow_mo > 0 else None,
            "user_data_dir": str(user_data_dir),
            "executable_path": browser_cfg.get("executable_path"),
        }
        return {k: v for k, v in launch_args.items() if v is not None}

    def launch(self, profile_name: Optional[str] = None) -> BrowserSession:
        """启动持久化浏览器并返回会话。"""
        launch_args = self.build_launch_args(profile_name)
        Path(launch_args["user_data_dir"]).mkdir(parents=True, exist_ok=True)

        playwright = sync_playwright().start()
        try:
            context = playwright.chromium.launch_persistent_context(**launch_args)
        except Exception:
            playwright.stop()
            raise
        page = context.pages[0] if context.pages else context.new_page()

        self._attach_basic_listeners(page)
        self._attach_context_listeners(context)
        self._log(f"✓ Browser launched ({launch_args['user_data_dir']})", "info")

        return BrowserSession(playwright=playwright, context=context, page=page)

    def _attach_basic_listeners(self, page: Page) -> None:
        """采集页面基础错误信息，写入日志便于排查。"""
        try:
            page.on(
                "console",
                lambda msg: self._log(f"[console:{msg.type}] {msg.text}", "warn")
                if msg.type in ("error", "warning")
                else None,
            )
            page.on(
                "pageerror",
                lambda exc: self._log(f"[pageerror] {exc}", "error"),
            )
        except Exception:
            pass

    def _attach_context_listeners(self, context: BrowserContext) -> None:
        try:
            context.on(
                "requestfailed",
                lambda req: self._log(
                    f"[requestfailed] {req.method} {req.url}", "warn"
                ),
            )
        except Exception:
            pass


def open_platform_session(platform: str, log_fn: Optional[LogFn] = None) -> BrowserSession:
    """Coordinator 默认的会话工厂：每个平台一个独立浏览器 profile。"""
    return BrowserManager(log_fn=log_fn).launch(profile_name=platform)
