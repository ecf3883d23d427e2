from __future__ import annotations

import pytest

import dynamap_py as dynamap


def test_init_exposes_lazy_exports_via_getattr() -> None:
    assert dynamap.__version__ == "0.1.0"

    assert callable(dynamap.Table)
    assert callable(dynamap.Context)
    assert callable(dynamap.Item)
    assert callable(dynamap.BatchEngine)
    assert callable(dynamap.TableLifecycle)
    assert callable(dynamap.build_create_table_request)
    assert callable(dynamap.create_dynamodb_client)
    assert callable(dynamap.instrument_client)

    with pytest.raises(AttributeError):
        _ = dynamap.does_not_exist


def test_all_names_resolve() -> None:
    for name in dynamap.__all__:
        assert getattr(dynamap, name) is not None
