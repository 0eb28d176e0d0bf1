"""
Settings repository - Data access layer for LedgerSettings model.
Handles all database queries related to settings.
"""
from sqlalchemy.orm import Session

from timebank.models import LedgerSettings
from timebank.schemas import LedgerPolicy, SettingsUpdate


class SettingsRepository:
    """Repository for LedgerSettings data access"""

    @staticmethod
    def get(db: Session) -> LedgerSettings:
        """
        Get settings (creates with defaults if not exists).

        Returns:
            LedgerSettings object
        """
        settings = db.query(LedgerSettings).first()
        if not settings:
            settings = LedgerSettings()
            db.add(settings)
            db.commit()
            db.refresh(settings)
        return settings

    @staticmethod
    def update(db: Session, settings_update: SettingsUpdate) -> LedgerSettings:
        """
        Apply the fields set in settings_update.

        Args:
            db: Database session
            settings_update: Partial update; unset fields are left alone

        Returns:
            Updated settings
        """
        settings = SettingsRepository.get(db)
        for field, value in settings_update.model_dump(exclude_unset=True).items():
            setattr(settings, field, value)
        db.commit()
        db.refresh(settings)
        return settings

    @staticmethod
    def to_policy(settings: LedgerSettings) -> LedgerPolicy:
        """
        Build the ledger policy from stored settings.

        Raises:
            pydantic.ValidationError: If the stored bounds are inconsistent
        """
        return LedgerPolicy.model_validate(settings)
