"""
DAS — Distribution Automation System
Model package.

The SQLAlchemy extension object lives here so that every model module can do
``from das.models import db`` without importing the application factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
