# agencydash/models.py
from __future__ import annotations

from sqlalchemy import (
    JSON as SAJSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.mysql import JSON as MySQLJSON
from sqlalchemy.sql import func
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from agencydash.extensions import db

# Native JSON on MySQL, generic JSON elsewhere (SQLite in tests)
JSONType = SAJSON().with_variant(MySQLJSON(), "mysql")

INTEGRATION_WORDPRESS = "wordpress"


# -------------------------
# User (dashboard operator)
# -------------------------
class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(120), nullable=False)
    email = db.Column(String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(String(255), nullable=False)

    # owner|admin|member
    role = db.Column(String(32), nullable=False, server_default="member", index=True)

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        # Treat owners and admins as admins
        return self.role in ("owner", "admin")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"


# -------------------------
# Client (tenant) and its websites
# -------------------------
class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(150), nullable=False)
    status = db.Column(String(32), nullable=False, server_default="active")  # active|paused|archived

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    websites = db.relationship("Website", back_populates="client", cascade="all, delete-orphan")
    integrations = db.relationship("Integration", back_populates="client", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r}>"


class Website(db.Model):
    __tablename__ = "websites"

    id = db.Column(Integer, primary_key=True)
    client_id = db.Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), index=True, nullable=False)
    name = db.Column(String(150), nullable=True)
    url = db.Column(String(255), nullable=False)

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    client = db.relationship("Client", back_populates="websites", lazy="joined")

    def __repr__(self) -> str:
        return f"<Website id={self.id} url={self.url!r}>"


# -------------------------
# Integration (one connected service per client)
# -------------------------
class Integration(db.Model):
    __tablename__ = "integrations"

    id = db.Column(Integer, primary_key=True)
    client_id = db.Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), index=True, nullable=False)
    type = db.Column(String(32), nullable=False, index=True)  # wordpress|...
    is_active = db.Column(Boolean, nullable=False, default=True, server_default="1")
    # `metadata` is reserved on declarative models
    meta = db.Column("metadata", JSONType, nullable=True)

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    client = db.relationship("Client", back_populates="integrations")
    wordpress_credential = db.relationship(
        "WordPressCredential",
        back_populates="integration",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @classmethod
    def active_wordpress_for_client(cls, client_id: int):
        return (
            cls.query.filter_by(client_id=client_id, type=INTEGRATION_WORDPRESS, is_active=True)
            .order_by(cls.id.desc())
            .first()
        )

    def __repr__(self) -> str:
        return f"<Integration id={self.id} client_id={self.client_id} type={self.type!r} active={self.is_active}>"


# -------------------------
# WordPressCredential (encrypted at rest)
# -------------------------
class WordPressCredential(db.Model):
    __tablename__ = "wordpress_credentials"

    id = db.Column(Integer, primary_key=True)
    integration_id = db.Column(
        Integer,
        ForeignKey("integrations.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )
    site_url = db.Column(String(255), nullable=False)

    # Fernet tokens (see crypto_utils)
    username_encrypted = db.Column(Text, nullable=False)
    app_password_encrypted = db.Column(Text, nullable=False)
    shared_secret_encrypted = db.Column(Text, nullable=False)
    ssh_host_encrypted = db.Column(Text, nullable=True)
    ssh_user_encrypted = db.Column(Text, nullable=True)
    ssh_key_encrypted = db.Column(Text, nullable=True)
    ssh_port = db.Column(Integer, nullable=False, default=22, server_default="22")

    # Advisory health cache; last writer wins
    mu_plugin_installed = db.Column(Boolean, nullable=False, default=False, server_default="0")
    mu_plugin_version = db.Column(String(32), nullable=True)
    last_health_check = db.Column(DateTime, nullable=True)
    last_health_status = db.Column(String(16), nullable=True)  # pass|warn|fail

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    integration = db.relationship("Integration", back_populates="wordpress_credential")

    def __repr__(self) -> str:
        return f"<WordPressCredential id={self.id} integration_id={self.integration_id} site_url={self.site_url!r}>"


# -------------------------
# WPActionLog (remote actions taken from the dashboard)
# -------------------------
class WPActionLog(db.Model):
    __tablename__ = "wp_action_logs"

    id = db.Column(Integer, primary_key=True)
    website_id = db.Column(Integer, ForeignKey("websites.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = db.Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = db.Column(String(64), nullable=False)
    status = db.Column(String(16), nullable=False, default="processing")  # processing|completed|failed
    params = db.Column(JSONType, nullable=True)
    result = db.Column(JSONType, nullable=True)
    error = db.Column(Text, nullable=True)

    created_at = db.Column(DateTime, server_default=func.now(), nullable=False)
    completed_at = db.Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<WPActionLog id={self.id} website_id={self.website_id} action={self.action!r} status={self.status!r}>"
