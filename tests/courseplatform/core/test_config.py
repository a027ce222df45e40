import pytest

from courseplatform.core import config


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [(None, False), ('1', True), (' Yes ', True), ('on', True), ('false', False), ('0', False)],
)
def test_get_bool(raw, expected: bool) -> None:
    assert config._get_bool(raw) is expected


def test_get_bool_uses_default_when_unset() -> None:
    assert config._get_bool(None, default=True) is True


def test_get_list_splits_and_normalises() -> None:
    assert config._get_list(' Warn, ERROR ,, query') == ['warn', 'error', 'query']
    assert config._get_list('') == []


def test_validate_runtime_config_requires_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'DATABASE_URL', '')

    with pytest.raises(RuntimeError) as exception_info:
        config.validate_runtime_config()

    assert str(exception_info.value) == 'DATABASE_URL must be set.'


def test_validate_runtime_config_rejects_unknown_error_format(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'DATABASE_URL', 'sqlite://')
    monkeypatch.setattr(config, 'CLIENT_ERROR_FORMAT', 'loud')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()
