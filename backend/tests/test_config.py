import pytest

from blog.config import Settings


def test_default_jwt_secret_is_rejected_outside_dev(monkeypatch):
    monkeypatch.setenv('ENV', 'prod')
    monkeypatch.delenv('JWT_SECRET', raising=False)
    monkeypatch.setenv('ALLOW_INSECURE_JWT', 'false')
    with pytest.raises(RuntimeError):
        Settings()

    monkeypatch.setenv('ALLOW_INSECURE_JWT', 'true')
    assert Settings().ENV == 'prod'

    monkeypatch.setenv('ALLOW_INSECURE_JWT', 'false')
    monkeypatch.setenv('JWT_SECRET', 'a-real-secret')
    assert Settings().JWT_SECRET == 'a-real-secret'


def test_default_jwt_secret_is_fine_in_dev(monkeypatch):
    monkeypatch.setenv('ENV', 'DEV')
    monkeypatch.delenv('JWT_SECRET', raising=False)
    assert Settings().ENV == 'dev'


@pytest.mark.parametrize('name', ['ACCESS_TOKEN_TTL_SECONDS', 'REFRESH_TOKEN_TTL_SECONDS'])
@pytest.mark.parametrize('value', ['0', '-5'])
def test_token_lifetimes_must_be_positive(monkeypatch, name, value):
    monkeypatch.setenv('ENV', 'dev')
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        Settings()


def test_env_values_are_parsed(monkeypatch):
    monkeypatch.setenv('ENV', 'dev')
    monkeypatch.setenv('CORS_ORIGINS', ' https://a.test , ,https://b.test')
    monkeypatch.setenv('FILE_BASE_URL', '/media/')
    monkeypatch.setenv('ALLOW_SIGNUP', 'FALSE')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    cfg = Settings()
    assert cfg.CORS_ORIGINS == ['https://a.test', 'https://b.test']
    assert cfg.FILE_BASE_URL == '/media'
    assert cfg.ALLOW_SIGNUP is False
    assert cfg.LOG_LEVEL == 'DEBUG'
