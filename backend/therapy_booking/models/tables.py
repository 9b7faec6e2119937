from sqlalchemy import Column, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata

# Every status except this one keeps the slot occupied
CANCELLED_STATUS = 'cancelled'
_ACTIVE_SLOT_WHERE = text("status <> 'cancelled'")


class Psychologists(Base):
    __tablename__ = 'psychologists'

    first_name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    last_name = Column(Text)
    email = Column(Text)
    # JSON: {"access_token", "refresh_token", "scope", "token_expires_at"}
    google_calendar_credentials = Column(Text)
    calendar_needs_reconnect = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    availability = relationship('Availability', back_populates='psychologist')
    recurring_blocks = relationship('RecurringBlocks', back_populates='psychologist')
    sessions = relationship('Sessions', back_populates='psychologist')
    assessment_sessions = relationship('AssessmentSessions', back_populates='psychologist')


class Availability(Base):
    __tablename__ = 'availability'
    __table_args__ = (
        UniqueConstraint('psychologist_id', 'date'),
    )

    psychologist_id = Column(ForeignKey('psychologists.id', ondelete='CASCADE'), nullable=False)
    date = Column(Text, nullable=False)  # YYYY-MM-DD
    # JSON list of slot start strings; legacy rows mix "5:00 PM" / "17:00:00"
    time_slots = Column(Text, nullable=False, server_default=text("'[]'"))
    is_available = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    psychologist = relationship('Psychologists', back_populates='availability')


class RecurringBlocks(Base):
    __tablename__ = 'psychologist_recurring_blocks'
    __table_args__ = (
        UniqueConstraint('psychologist_id', 'day_of_week'),
    )

    psychologist_id = Column(ForeignKey('psychologists.id', ondelete='CASCADE'), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    block_entire_day = Column(Integer, nullable=False, server_default=text('0'))
    time_slots = Column(Text, nullable=False, server_default=text("'[]'"))
    id = Column(Integer, primary_key=True)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    psychologist = relationship('Psychologists', back_populates='recurring_blocks')


class Sessions(Base):
    """Therapy sessions."""
    __tablename__ = 'sessions'
    __table_args__ = (
        Index(
            'uq_sessions_active_slot',
            'psychologist_id', 'scheduled_date', 'scheduled_time',
            unique=True,
            sqlite_where=_ACTIVE_SLOT_WHERE,
            postgresql_where=_ACTIVE_SLOT_WHERE,
        ),
    )

    psychologist_id = Column(ForeignKey('psychologists.id', ondelete='CASCADE'), nullable=False)
    scheduled_date = Column(Text, nullable=False)  # YYYY-MM-DD
    scheduled_time = Column(Text, nullable=False)  # HH:MM
    status = Column(Text, nullable=False, server_default=text("'booked'"))
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer)
    reminder_sent = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    psychologist = relationship('Psychologists', back_populates='sessions')


class AssessmentSessions(Base):
    __tablename__ = 'assessment_sessions'
    __table_args__ = (
        Index(
            'uq_assessment_sessions_active_slot',
            'psychologist_id', 'scheduled_date', 'scheduled_time',
            unique=True,
            sqlite_where=_ACTIVE_SLOT_WHERE,
            postgresql_where=_ACTIVE_SLOT_WHERE,
        ),
    )

    psychologist_id = Column(ForeignKey('psychologists.id', ondelete='CASCADE'), nullable=False)
    scheduled_date = Column(Text, nullable=False)
    scheduled_time = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'booked'"))
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer)
    reminder_sent = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    psychologist = relationship('Psychologists', back_populates='assessment_sessions')


class SlotClaims(Base):
    """
    One row per occupied slot across both booking tables.

    The unique constraint is what makes therapy and assessment sessions a
    single conflict domain. A claim whose booking is cancelled is stale and
    gets reclaimed by the next reservation of that slot.
    """
    __tablename__ = 'slot_claims'
    __table_args__ = (
        UniqueConstraint('psychologist_id', 'scheduled_date', 'scheduled_time'),
        UniqueConstraint('booking_kind', 'booking_id'),
    )

    psychologist_id = Column(ForeignKey('psychologists.id', ondelete='CASCADE'), nullable=False)
    scheduled_date = Column(Text, nullable=False)
    scheduled_time = Column(Text, nullable=False)
    booking_kind = Column(Text, nullable=False)  # therapy / assessment
    booking_id = Column(Integer, nullable=False)
    id = Column(Integer, primary_key=True)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
