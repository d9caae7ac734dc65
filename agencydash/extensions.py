# agencydash/extensions.py
from __future__ import annotations

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

# --- SQLAlchemy --------------------------------------------------------------
db = SQLAlchemy()
# --- CSRF ------------------------------------------------------------------
csrf = CSRFProtect()
# --- Flask-Migrate -----------------------------------------------------------
migrate = Migrate()
# --- Flask-Login -------------------------------------------------------------
login_manager = LoginManager()
# --- Flask-Limiter (storage chosen in create_app) ----------------------------
limiter = Limiter(key_func=get_remote_address, in_memory_fallback_enabled=True)

__all__ = ["db", "csrf", "migrate", "login_manager", "limiter"]
