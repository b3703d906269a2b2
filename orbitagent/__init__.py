"""
OrbitAgent - 多平台投递自动化的弹性与编排引擎

包初始化文件。
"""

from __future__ import annotations

from dotenv import find_dotenv, load_dotenv

# Auto-load project .env once on package import so OPENAI_API_KEY and
# ORBITAGENT_* overrides work without exporting them manually.
load_dotenv(find_dotenv(usecwd=True), override=False)

__version__ = "0.1.0"
