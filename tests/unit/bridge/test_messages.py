# tests/unit/bridge/test_messages.py
import pytest

from scorm_mcp.bridge.messages import OPERATIONS, decode_bytes, encode_bytes, error_from_payload, normalize_error
from scorm_mcp.errors import ErrorCode, ScormMcpError
from scorm_mcp.runtime.manager import RuntimeManager


def test_normalize_error_accepts_text_objects_and_nothing():
    assert normalize_error("boom").message == "boom"
    assert normalize_error(None).message == "Engine error"

    err = normalize_error({"message": "Bad method", "code": "INVALID_SCORM_METHOD", "data": {"method": "X"}})
    assert (err.message, err.code, err.data) == ("Bad method", "INVALID_SCORM_METHOD", {"method": "X"})

    assert normalize_error({}).message == "Engine error"


def test_error_from_payload_maps_codes():
    assert error_from_payload({"message": "m", "code": "PAGE_LOAD_FAILED"}).code is ErrorCode.PAGE_LOAD_FAILED
    assert error_from_payload({"message": "m", "code": "SOMETHING_NEW"}).code is ErrorCode.UNKNOWN_ERROR
    assert error_from_payload("plain").code is ErrorCode.UNKNOWN_ERROR


def test_decode_bytes_requires_encoded_payload():
    assert decode_bytes(encode_bytes(b"\x00\x01")) == b"\x00\x01"

    with pytest.raises(ScormMcpError) as exc_info:
        decode_bytes(None)
    assert exc_info.value.code is ErrorCode.CAPTURE_FAILED


def test_every_operation_names_a_runtime_method():
    for msg_type, method_name in OPERATIONS.items():
        assert msg_type.startswith("runtime_")
        assert callable(getattr(RuntimeManager, method_name, None)), msg_type
