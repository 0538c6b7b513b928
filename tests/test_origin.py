from auth.origin import OriginValidator, is_allowed_origin


def test_allows_listed_origin() -> None:
    validator = OriginValidator({"https://host.example.com"})

    assert validator.is_allowed("https://host.example.com") is True


def test_blocks_unknown_origin() -> None:
    validator = OriginValidator({"https://host.example.com"})

    assert validator.is_allowed("https://unknown.example") is False


def test_requires_exact_match() -> None:
    validator = OriginValidator({"https://host.example.com"})

    assert validator.is_allowed("https://host.example.com/") is False
    assert validator.is_allowed("http://host.example.com") is False
    assert validator.is_allowed("https://sub.host.example.com") is False
    assert validator.is_allowed("https://host.example.com:443") is False


def test_no_wildcards() -> None:
    validator = OriginValidator({"*"})

    assert validator.is_allowed("https://host.example.com") is False


def test_empty_or_missing_origin() -> None:
    validator = OriginValidator({"https://host.example.com"})

    assert validator.is_allowed("") is False
    assert validator.is_allowed(None) is False


def test_empty_allow_list_blocks_everything() -> None:
    assert is_allowed_origin("https://host.example.com", set()) is False
