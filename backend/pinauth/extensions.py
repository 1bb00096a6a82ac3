# Overview: Flask extension instances for database, migrations and attempt throttling.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.rate_limit_service import RateLimiter

db = SQLAlchemy()
migrate = Migrate()
rate_limiter = RateLimiter()
