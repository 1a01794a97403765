# Test helpers package
from .test_utils import (
    TEST_API_KEY,
    assert_response_error,
    create_model_payload,
    create_provider_payload,
    create_user_payload,
    openai_reply,
)

__all__ = [
    "TEST_API_KEY",
    "assert_response_error",
    "create_model_payload",
    "create_provider_payload",
    "create_user_payload",
    "openai_reply",
]
