"""
AppSettings Repository - data access layer for AppSettings model.
"""

from typing import Optional
from sqlmodel import Session, select

from db_engine import get_engine
from models import AppSettings


class AppSettingsRepository:
    """Repository for the singleton AppSettings row."""

    @staticmethod
    def get(session: Optional[Session] = None) -> AppSettings:
        """Retrieve settings, returning defaults if none were saved yet."""
        def _get(sess: Session) -> AppSettings:
            prefs = sess.exec(select(AppSettings)).first()
            return prefs if prefs is not None else AppSettings()

        if session is not None:
            return _get(session)
        with Session(get_engine()) as session:
            return _get(session)

    @staticmethod
    def save(
        default_portfolio_id: Optional[str] = None,
        show_in_thb: Optional[bool] = None,
        dark_mode: Optional[bool] = None,
        session: Optional[Session] = None
    ) -> AppSettings:
        """Save or update settings. Arguments left as None keep their stored value."""
        def _save(sess: Session) -> AppSettings:
            prefs = sess.exec(select(AppSettings)).first()
            if prefs is None:
                prefs = AppSettings()
            if default_portfolio_id is not None:
                prefs.default_portfolio_id = default_portfolio_id
            if show_in_thb is not None:
                prefs.show_in_thb = show_in_thb
            if dark_mode is not None:
                prefs.dark_mode = dark_mode
            sess.add(prefs)
            sess.flush()
            return prefs

        if session is not None:
            return _save(session)
        with Session(get_engine()) as session:
            result = _save(session)
            session.commit()
            session.refresh(result)
            return result

    @staticmethod
    def replace(settings: AppSettings, session: Session) -> AppSettings:
        """Replace the stored settings row wholesale (used by restore)."""
        for existing in session.exec(select(AppSettings)).all():
            session.delete(existing)
        session.flush()
        session.add(settings)
        session.flush()
        return settings
