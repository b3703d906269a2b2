"""
Skill (site hint) file loader.

Markdown skill file format::

    ---
    site: linkedin.com/jobs
    lastFullScan: ""
    lastVerified: ""
    ---

    ## easy_apply

    ### click_apply
    - **selectors**: `button.jobs-apply-button`, `.jobs-s-apply button`
    - **textMatches**: Easy Apply
    - **ariaLabels**: (none)
    - **location**: top card
    - **elementType**: button
    - **fallback**: The blue "Easy Apply" button in the job top card
    - **confidence**: 0.9

JSON skill files use the SiteHintFile camelCase shape directly.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional, Sequence

import yaml

from ..constants import HINT_DEFAULT_CONFIDENCE
from .console import LogFn, console_log
from .hints import ActionStep, ElementHint, HintAction, SiteHintFile

_FRONTMATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n(.*)$", re.DOTALL)
_BULLET_RE = re.compile(r"^- \*\*(\w+)\*\*:\s*(.*)$")
_NONE_VALUES = {"", "(none)", "none", "-"}


class SkillsLoader:
    def __init__(self, search_dirs: Sequence[Path | str], log_fn: Optional[LogFn] = None) -> None:
        self.search_dirs = [Path(d) for d in search_dirs]
        self._log = log_fn or console_log("SkillsLoader")
        self._cache: dict[str, SiteHintFile] = {}

    def load_skill(self, site: str) -> Optional[SiteHintFile]:
        """Load the skill for a site key (e.g. "linkedin"), cached after first read."""
        cached = self._cache.get(site)
        if cached is not None:
            return cached

        path = self.find_skill_file(site)
        if path is None:
            return None

        if path.suffix == ".md":
            result = self._parse_markdown_file(path)
        else:
            result = self._parse_json_file(path)
        if result is not None:
            self._cache[site] = result
        return result

    def reload_skill(self, site: str) -> Optional[SiteHintFile]:
        self._cache.pop(site, None)
        return self.load_skill(site)

    def clear_cache(self) -> None:
        self._cache.clear()

    def find_skill_file(self, site: str) -> Optional[Path]:
        candidates = [f"{site}.md", f"{site}-jobs.md", f"{site}-jobs.json"]
        for directory in self.search_dirs:
            for filename in candidates:
                full_path = directory / filename
                if full_path.exists():
                    self._log(f"Found skill file: {site} -> {full_path}", "info")
                    return full_path
        return None

    def _parse_markdown_file(self, path: Path) -> Optional[SiteHintFile]:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            self._log(f"❌ Failed to read skill file {path}: {exc}", "error")
            return None
        return self.parse_markdown_content(content)

    def _parse_json_file(self, path: Path) -> Optional[SiteHintFile]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return SiteHintFile.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self._log(f"❌ Failed to parse JSON skill file {path}: {exc}", "error")
            return None

    def parse_markdown_content(self, content: str) -> Optional[SiteHintFile]:
        match = _FRONTMATTER_RE.match(content)
        if not match:
            self._log("⚠️ No YAML frontmatter found in skill file", "warn")
            return None

        try:
            meta = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as exc:
            self._log(f"❌ Invalid YAML frontmatter: {exc}", "error")
            return None

        if not isinstance(meta, dict) or not meta.get("site"):
            self._log('⚠️ Missing required "site" field in frontmatter', "warn")
            return None

        return SiteHintFile(
            site=str(meta["site"]),
            actions=_parse_actions(match.group(2)),
            last_full_scan=str(meta.get("lastFullScan") or ""),
            last_verified=str(meta.get("lastVerified") or ""),
        )


def _parse_list(value: str) -> tuple[str, ...]:
    if value.strip() in _NONE_VALUES:
        return ()
    items = [part.strip().strip("`") for part in value.split(",")]
    return tuple(item for item in items if item)


def _parse_actions(body: str) -> dict[str, HintAction]:
    steps_by_action: dict[str, list[ActionStep]] = {}
    current_action: Optional[str] = None
    current_step: Optional[dict] = None

    def flush() -> None:
        if current_action and current_step:
            steps_by_action.setdefault(current_action, []).append(
                ActionStep(
                    intent=current_step["intent"],
                    hint=ElementHint(
                        selectors=current_step.get("selectors", ()),
                        text_matches=current_step.get("textMatches", ()),
                        aria_labels=current_step.get("ariaLabels", ()),
                        location=current_step.get("location", ""),
                        element_type=current_step.get("elementType", ""),
                    ),
                    fallback_description=current_step.get("fallback", ""),
                    confidence=current_step.get("confidence", HINT_DEFAULT_CONFIDENCE),
                    failure_count=current_step.get("failureCount", 0),
                )
            )

    for raw_line in body.splitlines():
        line = raw_line.strip()
        if line.startswith("## ") and not line.startswith("### "):
            flush()
            current_step = None
            current_action = line[3:].strip()
            continue
        if line.startswith("### "):
            flush()
            current_step = {"intent": line[4:].strip()}
            continue
        if current_step is None or not line.startswith("- **"):
            continue

        m = _BULLET_RE.match(line)
        if not m:
            continue
        key, value = m.group(1), m.group(2).strip()
        if key in ("selectors", "textMatches", "ariaLabels"):
            current_step[key] = _parse_list(value)
        elif key in ("location", "elementType", "fallback"):
            current_step[key] = value
        elif key == "confidence":
            try:
                current_step[key] = float(value) or HINT_DEFAULT_CONFIDENCE
            except ValueError:
                current_step[key] = HINT_DEFAULT_CONFIDENCE
        elif key == "failureCount":
            try:
                current_step[key] = int(value)
            except ValueError:
                current_step[key] = 0

    flush()
    return {name: HintAction(steps=tuple(steps)) for name, steps in steps_by_action.items()}
