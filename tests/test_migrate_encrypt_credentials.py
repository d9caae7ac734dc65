from agencydash.crypto_utils import decrypt_string, is_encrypted
from agencydash.extensions import db
from agencydash.models import Integration, WordPressCredential
from migrate_encrypt_credentials import migrate_wordpress_credentials


def _plaintext_row(website):
    integration = Integration(client_id=website.client_id, type="wordpress", is_active=True, meta={})
    db.session.add(integration)
    db.session.commit()
    row = WordPressCredential(
        integration_id=integration.id,
        site_url="https://example.com",
        username_encrypted="admin",
        app_password_encrypted="abcd efgh ijkl mnop",
        shared_secret_encrypted="s3cret",
    )
    db.session.add(row)
    db.session.commit()
    return row


def test_dry_run_changes_nothing(app, website):
    row = _plaintext_row(website)
    assert migrate_wordpress_credentials(dry_run=True) == 1
    db.session.refresh(row)
    assert row.app_password_encrypted == "abcd efgh ijkl mnop"


def test_encrypts_plaintext_columns_once(app, website):
    row = _plaintext_row(website)
    assert migrate_wordpress_credentials() == 1

    db.session.refresh(row)
    assert is_encrypted(row.app_password_encrypted)
    assert decrypt_string(row.shared_secret_encrypted) == "s3cret"
    assert row.ssh_key_encrypted is None

    assert migrate_wordpress_credentials() == 0


def test_encrypted_rows_are_left_alone(app, connected_website):
    before = WordPressCredential.query.one().app_password_encrypted
    assert migrate_wordpress_credentials() == 0
    assert WordPressCredential.query.one().app_password_encrypted == before
