import pytest
from cryptography.fernet import Fernet

from agencydash import create_app
from agencydash.extensions import db as _db
from agencydash.models import Client, Integration, User, Website, WordPressCredential
from agencydash.wp.credentials import WordPressCredentials, encrypt_credentials
from tests.helpers import SITE, FakeHTTP


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SQLALCHEMY_ENGINE_OPTIONS": {},
        "APP_FERNET_KEY": Fernet.generate_key().decode("utf-8"),
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "LOG_TO_FILE": False,
        "SENTRY_DSN": "",
        "SESSION_COOKIE_SECURE": False,
        "SESSION_PROTECTION": None,
    })
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(role):
    user = User(name=f"{role} user", email=f"{role}@example.com", role=role)
    user.set_password("Str0ng!Passw0rd")
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    return _make_user("admin")


@pytest.fixture
def admin_client(app, admin_user):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["_user_id"] = str(admin_user.id)
        sess["_fresh"] = True
    return c


@pytest.fixture
def member_client(app):
    user = _make_user("member")
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["_user_id"] = str(user.id)
        sess["_fresh"] = True
    return c


@pytest.fixture
def website(app):
    tenant = Client(name="Acme Plumbing")
    _db.session.add(tenant)
    _db.session.commit()
    site = Website(client_id=tenant.id, name="Acme", url=SITE)
    _db.session.add(site)
    _db.session.commit()
    return site


@pytest.fixture
def wp_creds():
    return WordPressCredentials(
        site_url=SITE + "/",
        username="admin",
        app_password="abcd efgh ijkl mnop",
        shared_secret="s" * 64,
    )


@pytest.fixture
def connected_website(app, website, wp_creds):
    integration = Integration(
        client_id=website.client_id,
        type="wordpress",
        is_active=True,
        meta={"site_url": SITE, "wp_user_name": "Site Admin"},
    )
    _db.session.add(integration)
    _db.session.commit()
    row = WordPressCredential(integration_id=integration.id, **encrypt_credentials(wp_creds))
    _db.session.add(row)
    _db.session.commit()
    return website
