"""Tests for models."""

from helpdesk.models import Attachment, Comment, DeadlineHistory, Ticket, User, utcnow


class TestTicketRelations:
    """Tests for the rows owned by a ticket."""

    def test_children_deleted_with_ticket(self, db_session, sample_ticket):
        """Comments, attachments and deadline history go with the ticket."""
        sample_ticket.comments.append(Comment(user_id="user-1", content="Oi"))
        sample_ticket.attachments.append(
            Attachment(file_name="a.png", file_url="https://files/a.png")
        )
        sample_ticket.deadline_history.append(
            DeadlineHistory(new_deadline=utcnow(), reason="x", extended_by="user-1")
        )
        db_session.commit()

        db_session.delete(sample_ticket)
        db_session.commit()

        assert db_session.query(Comment).count() == 0
        assert db_session.query(Attachment).count() == 0
        assert db_session.query(DeadlineHistory).count() == 0

    def test_ids_generated(self, db_session, regular_user):
        ticket = Ticket(
            title="Sem id",
            description="Gerado pelo banco",
            category="other",
            priority="low",
            user_id=regular_user.id,
        )
        db_session.add(ticket)
        db_session.commit()
        assert len(ticket.id) == 32
        assert ticket.status == "open"


class TestNotificationState:
    def test_json_round_trip(self, db_session, sample_ticket):
        sample_ticket.notification_state = {"dedupe_keys": ["a"]}
        db_session.commit()
        db_session.expire_all()
        assert db_session.get(Ticket, "ticket-1").notification_state == {
            "dedupe_keys": ["a"]
        }


class TestUser:
    def test_defaults(self, db_session):
        user = User(email="x@example.com", name="X")
        db_session.add(user)
        db_session.commit()
        assert user.role == "user"
        assert user.active is True
        assert not user.is_admin
