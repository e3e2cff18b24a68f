"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Provides the common constructor and session-handling contract.
    Subclasses receive a SQLAlchemy ``Session`` and use ``session.flush()``
    -- never ``session.commit()``.  The caller (CorrectionService with
    auto_commit, ``session_scope()``, or a test) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for flush-only kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; multi-step operations stay atomic.
    """

    def __init__(self, session: Session):
        self.session = session
