"""Tests for ApiResponse envelope and ResponseMeta."""
from bookrelay.api.schemas.envelope import ApiResponse, ResponseMeta


def test_success_response():
    resp = ApiResponse.success({"key": "value"})
    assert resp.ok is True
    assert resp.data == {"key": "value"}
    assert resp.error is None


def test_fail_response():
    resp = ApiResponse.fail("something broke", warnings=["w1"])
    assert resp.ok is False
    assert resp.error == "something broke"
    assert resp.meta.warnings == ["w1"]


def test_meta_defaults():
    meta = ResponseMeta()
    assert meta.generated_at is not None
    assert meta.warnings == []
    assert meta.total is None


def test_meta_kwargs_on_success():
    resp = ApiResponse.success([1, 2, 3], total=3, elapsed_ms=5.0)
    dumped = resp.model_dump()
    assert dumped["ok"] is True
    assert dumped["data"] == [1, 2, 3]
    assert dumped["meta"]["total"] == 3
    assert dumped["meta"]["elapsed_ms"] == 5.0
