"""
Record store for members and their credential history.

Created once per application in create_app and reached through get_store();
the underlying SQLAlchemy session is scoped to the request by Flask-SQLAlchemy.
"""

from flask import current_app
from sqlalchemy import or_, select, text
from sqlalchemy.exc import SQLAlchemyError

from membercard import lifecycle
from membercard.errors import PersistenceFailure
from membercard.models import Member


class MemberStore:
    """SQL-backed store; every member load carries its credentials newest-first"""

    def __init__(self, db):
        self.db = db

    @property
    def session(self):
        return self.db.session

    def ping(self):
        self.session.execute(text('SELECT 1'))

    def get_member(self, member_id):
        if not member_id:
            return None
        return self.session.get(Member, member_id)

    def list_members(self, search=None, status=None):
        """
        Members ordered by last then first name.

        Args:
            search: case-insensitive substring of first name, last name, id or colony
            status: ACTIVE or INACTIVE; None for every member
        """
        query = select(Member).order_by(Member.last_name, Member.first_name)

        search = (search or '').strip()
        if search:
            pattern = f'%{search}%'
            query = query.where(or_(
                Member.first_name.ilike(pattern),
                Member.last_name.ilike(pattern),
                Member.id.ilike(pattern),
                Member.colony.ilike(pattern),
            ))
        if status:
            query = query.where(Member.status == status)

        return self.session.execute(query).scalars().all()

    def upsert_member(self, member):
        self.session.add(member)
        self._commit(f'saving member {member.id}')
        return member

    def delete_member(self, member_id):
        member = self.get_member(member_id)
        if member is None:
            return False
        self.session.delete(member)
        self._commit(f'deleting member {member_id}')
        return True

    def issue_credential(self, member_id, expiration_date, today=None):
        """
        Revoke the active credential and insert its replacement in one transaction.

        Returns:
            tuple: (member, new credential), or (None, None) if the member does not exist
        """
        member = self.session.execute(
            select(Member).where(Member.id == member_id).with_for_update()
        ).scalar_one_or_none()
        if member is None:
            return None, None

        credentials, credential = lifecycle.issue_credential(member.credentials, expiration_date, today=today)
        member.credentials = credentials
        self._commit(f'issuing credential for member {member_id}')

        current_app.logger.info(
            f"Issued credential {credential.id} for member {member_id} (expires {credential.expiration_date})"
        )
        return member, credential

    def _commit(self, action):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            current_app.logger.error(f"Store failure while {action}: {e}")
            raise PersistenceFailure(f'Store failure while {action}') from e

    def close(self):
        self.session.remove()
        self.db.engine.dispose()


def get_store():
    return current_app.extensions['member_store']
