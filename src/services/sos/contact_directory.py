"""
Emergency Contact Directory

Supplies the ordered list of people to notify during an SOS. The engine
only ever reads a snapshot; adding, updating and removing contacts belongs
to the user profile.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from src.core.database import DatabaseManager, DatabaseError
from src.models.alert import EmergencyContact
from .errors import PersistenceFailure


RELATIONSHIP_KEYWORDS = [
    (('mom', 'mother'), 'Mother'),
    (('dad', 'father'), 'Father'),
    (('spouse', 'wife', 'husband'), 'Spouse'),
    (('sister', 'brother'), 'Sibling'),
]


def infer_relationship(name: str) -> str:
    """Guess a relationship label from the contact name"""
    lowered = name.lower()
    for keywords, relationship in RELATIONSHIP_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return relationship
    return 'Contact'


def validate_contact(contact: EmergencyContact) -> None:
    """Reject contacts that cannot be dialled"""
    if not contact.name or not contact.name.strip():
        raise ValueError("Emergency contact name must not be empty")
    if not contact.is_dialable():
        raise ValueError(f"Emergency contact {contact.name} has no dialable phone number")


class ContactDirectory(ABC):
    """Read side of the emergency contact list"""

    @abstractmethod
    def get_contacts(self) -> List[EmergencyContact]:
        """Return contacts in notification order"""
        pass

    @abstractmethod
    def add_contact(self, contact: EmergencyContact) -> EmergencyContact:
        pass

    @abstractmethod
    def remove_contact(self, contact_id: str) -> bool:
        pass


class InMemoryContactDirectory(ContactDirectory):
    """Contact directory held in a Python list"""

    def __init__(self, contacts: Optional[List[EmergencyContact]] = None):
        self._contacts: List[EmergencyContact] = []
        for contact in contacts or []:
            self.add_contact(contact)

    def add_contact(self, contact: EmergencyContact) -> EmergencyContact:
        validate_contact(contact)
        if not contact.relationship or contact.relationship == 'Contact':
            contact.relationship = infer_relationship(contact.name)
        self._contacts.append(contact)
        return contact

    def remove_contact(self, contact_id: str) -> bool:
        before = len(self._contacts)
        self._contacts = [c for c in self._contacts if c.id != contact_id]
        return len(self._contacts) != before

    def get_contacts(self) -> List[EmergencyContact]:
        """Primary contacts first, then in the order they were added"""
        return sorted(self._contacts, key=lambda c: not c.is_primary)


class SQLiteContactDirectory(ContactDirectory):
    """Contact directory persisted in the emergency_contacts table"""

    def __init__(self, db: DatabaseManager, user_id: str):
        self.logger = logging.getLogger(__name__)
        self.db = db
        self.user_id = user_id

    def add_contact(self, contact: EmergencyContact) -> EmergencyContact:
        """
        Add a contact to the directory

        Args:
            contact: Contact to store; relationship is inferred if blank

        Returns:
            The stored contact

        Raises:
            ValueError: If the contact has no name or no dialable phone
            PersistenceFailure: If the database write fails
        """
        validate_contact(contact)
        if not contact.relationship or contact.relationship == 'Contact':
            contact.relationship = infer_relationship(contact.name)

        try:
            self.db.execute_update(
                """INSERT INTO emergency_contacts
                   (id, user_id, name, phone, relationship, is_primary)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (contact.id, self.user_id, contact.name, contact.phone,
                 contact.relationship, contact.is_primary)
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to add emergency contact {contact.name}: {e}")
            raise PersistenceFailure(f"Could not save emergency contact: {e}") from e

        self.logger.info(f"Added emergency contact {contact.id} for user {self.user_id}")
        return contact

    def update_contact(self, contact: EmergencyContact) -> bool:
        """Update an existing contact, returns False if it does not exist"""
        validate_contact(contact)
        try:
            rows_affected = self.db.execute_update(
                """UPDATE emergency_contacts
                   SET name = ?, phone = ?, relationship = ?, is_primary = ?, updated_at = ?
                   WHERE id = ? AND user_id = ?""",
                (contact.name, contact.phone, contact.relationship, contact.is_primary,
                 datetime.now().isoformat(), contact.id, self.user_id)
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to update emergency contact {contact.id}: {e}")
            raise PersistenceFailure(f"Could not update emergency contact: {e}") from e

        return rows_affected > 0

    def remove_contact(self, contact_id: str) -> bool:
        """Remove a contact, returns False if it does not exist"""
        try:
            rows_affected = self.db.execute_update(
                "DELETE FROM emergency_contacts WHERE id = ? AND user_id = ?",
                (contact_id, self.user_id)
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to remove emergency contact {contact_id}: {e}")
            raise PersistenceFailure(f"Could not remove emergency contact: {e}") from e

        if rows_affected:
            self.logger.info(f"Removed emergency contact {contact_id}")
        return rows_affected > 0

    def get_contact(self, contact_id: str) -> Optional[EmergencyContact]:
        rows = self.db.execute_query(
            "SELECT * FROM emergency_contacts WHERE id = ? AND user_id = ?",
            (contact_id, self.user_id)
        )
        return self._row_to_contact(rows[0]) if rows else None

    def get_contacts(self) -> List[EmergencyContact]:
        """Primary contacts first, then in the order they were added"""
        try:
            rows = self.db.execute_query(
                """SELECT * FROM emergency_contacts WHERE user_id = ?
                   ORDER BY is_primary DESC, position ASC""",
                (self.user_id,)
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to load emergency contacts: {e}")
            return []

        return [self._row_to_contact(row) for row in rows]

    def _row_to_contact(self, row) -> EmergencyContact:
        return EmergencyContact(
            id=row['id'],
            name=row['name'],
            phone=row['phone'],
            relationship=row['relationship'] or 'Contact',
            is_primary=bool(row['is_primary'])
        )
