import pytest
from sqlalchemy import create_engine, inspect

from courseplatform import init_db
from courseplatform.core import config


def test_init_db_creates_schema(tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    url = f'sqlite:///{tmp_path}/platform.db'
    monkeypatch.setattr(config, 'DATABASE_URL', url)

    init_db.main()

    assert capsys.readouterr().out.strip() == 'Schema is up to date.'
    assert 'ratings' in inspect(create_engine(url)).get_table_names()


def test_init_db_exits_when_database_url_missing(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    monkeypatch.setattr(config, 'DATABASE_URL', '')

    with pytest.raises(SystemExit) as exception_info:
        init_db.main()

    assert exception_info.value.code == 1
    assert 'DATABASE_URL must be set.' in capsys.readouterr().err
