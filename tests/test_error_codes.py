import pytest

from shared.codes import (
    CATEGORY_HTTP_STATUS,
    ERROR_MESSAGES,
    ErrorCategory,
    ErrorCode,
    ErrorPrefix,
    category_for_code,
)


def test_every_code_has_default_message():
    for code in ErrorCode:
        assert ERROR_MESSAGES[code]
        assert code.default_message == ERROR_MESSAGES[code]


def test_code_prefix_matches_value():
    assert ErrorCode.AUTZ_002.prefix is ErrorPrefix.AUTZ
    assert ErrorCode.NF_002.prefix is ErrorPrefix.NF
    for code in ErrorCode:
        assert code.value.startswith(code.prefix.value + "-")


def test_category_mapping_is_total():
    assert set(CATEGORY_HTTP_STATUS) == set(ErrorCategory)


@pytest.mark.parametrize(
    "category,status",
    [
        (ErrorCategory.NOT_FOUND, 404),
        (ErrorCategory.VALIDATION, 400),
        (ErrorCategory.BAD_REQUEST, 400),
        (ErrorCategory.AUTHENTICATION, 401),
        (ErrorCategory.AUTHORIZATION, 403),
        (ErrorCategory.CONFLICT, 409),
        (ErrorCategory.BUSINESS_LOGIC, 409),
        (ErrorCategory.INTERNAL, 500),
        (ErrorCategory.DATABASE, 500),
        (ErrorCategory.SYSTEM, 500),
        (ErrorCategory.EXTERNAL, 502),
        (ErrorCategory.TOO_MANY_REQUESTS, 429),
    ],
)
def test_category_http_status(category, status):
    assert category.http_status == status


def test_category_for_code_uses_prefix():
    assert category_for_code(ErrorCode.VAL_003) is ErrorCategory.VALIDATION
    assert category_for_code(ErrorCode.DB_002) is ErrorCategory.DATABASE
    assert category_for_code(ErrorCode.BL_001) is ErrorCategory.BUSINESS_LOGIC
    assert category_for_code("NF-001") is ErrorCategory.NOT_FOUND
