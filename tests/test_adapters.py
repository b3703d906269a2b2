from __future__ import annotations

import pytest

from orbitagent.core.adapters import (
    get_adapter,
    register_adapter,
    registered_platforms,
    unregister_adapter,
)
from orbitagent.errors import PlatformError


class _Adapter:
    pass


def test_register_and_resolve_adapter():
    register_adapter("zz-board", _Adapter)
    try:
        assert "zz-board" in registered_platforms()
        first = get_adapter("zz-board")
        second = get_adapter("zz-board")
        assert isinstance(first, _Adapter)
        # each lookup builds a fresh adapter
        assert first is not second
    finally:
        unregister_adapter("zz-board")
    assert "zz-board" not in registered_platforms()


def test_unknown_platform_raises_platform_error():
    with pytest.raises(PlatformError) as exc_info:
        get_adapter("nowhere")
    assert exc_info.value.code == "PLATFORM_ERROR"
    assert exc_info.value.context == {"platform": "nowhere"}
